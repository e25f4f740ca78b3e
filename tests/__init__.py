"""Test suite for the seq_lstm package."""
