import os
import numpy as np
import torch


class SequentialDB:
    """
    Serves fixed-size batches of rho consecutive records from a stored sequence.

    The archive (.npz) holds two arrays with the same first dimension:
      data   (N, *feature_shape)
      labels (N, *label_shape)

    Every batch row owns a cursor. Rows start evenly spaced over the sequence
    (row b at b * (N // batch_size)) and all cursors move forward by one per
    call, so num_batches calls use every record once as a window start while
    each row keeps temporal order. Indices wrap around at N.

    When N is not a multiple of batch_size the last N % batch_size records
    are not reached in the first pass. Cursors are never rewound, so later
    passes start further along and those records come up then.
    """

    def __init__(self, path, batch_size, rho):
        if not os.path.exists(path):
            raise FileNotFoundError(f"Dataset not found at {path}")

        with np.load(path) as archive:
            data = archive["data"]
            labels = archive["labels"]

        self._setup(data, labels, batch_size, rho)
        self.path = path

    @classmethod
    def from_arrays(cls, data, labels, batch_size, rho):
        db = cls.__new__(cls)
        db._setup(np.asarray(data), np.asarray(labels), batch_size, rho)
        db.path = None
        return db

    def _setup(self, data, labels, batch_size, rho):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if rho < 1:
            raise ValueError(f"rho must be >= 1, got {rho}")
        if len(data) != len(labels):
            raise ValueError(
                f"data has {len(data)} records but labels has {len(labels)}"
            )
        if len(data) < batch_size:
            raise ValueError(
                f"Dataset has {len(data)} records, fewer than batch_size={batch_size}"
            )

        self.batch_size = batch_size
        self.rho = rho
        self.dim = tuple(data.shape)
        self.ldim = tuple(labels.shape)

        # Flatten once, batches are then plain fancy indexing
        self.data = torch.from_numpy(
            np.ascontiguousarray(data, dtype=np.float32).reshape(len(data), -1)
        )
        self.labels = torch.from_numpy(
            np.ascontiguousarray(labels, dtype=np.float32).reshape(len(labels), -1)
        )

        self.num_records = len(data)
        self.feature_dim = self.data.shape[1]
        self.label_dim = self.labels.shape[1]
        self.num_batches = self.num_records // batch_size

        stride = self.num_records // batch_size
        self.batch_indexes = torch.arange(batch_size, dtype=torch.long) * stride
        self.reset()

    def reset(self):
        self.cursor = self.batch_indexes.clone()

    def __len__(self):
        return self.num_batches

    def get_batch(self):
        """
        Returns (inputs, targets):
          inputs  (batch_size, rho, feature_dim)
          targets (batch_size, rho, label_dim)
        """
        # (batch_size, rho) record indices
        offsets = torch.arange(self.rho, dtype=torch.long)
        ix = (self.cursor[:, None] + offsets[None, :]) % self.num_records

        inputs = self.data[ix]
        targets = self.labels[ix]

        self.cursor = (self.cursor + 1) % self.num_records
        return inputs, targets
