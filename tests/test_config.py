"""Tests for configuration dataclasses."""

from pathlib import Path

import pytest

from bigkin.core import DEFAULT_BLOCK_SIZE, KernelConfig, OutputConfig
from bigkin.errors import ConfigurationError


class TestOutputConfig:
    def test_defaults(self):
        """Default output directory and prefix."""
        config = OutputConfig()
        assert config.outdir == Path("output")
        assert config.prefix == "result"
        assert config.verbose is False

    def test_paths(self, tmp_path):
        """Output paths join outdir, prefix and suffix."""
        config = OutputConfig(outdir=tmp_path, prefix="study")
        assert config.log_path == tmp_path / "study.log.txt"
        assert config.output_path("pcs.txt") == tmp_path / "study.pcs.txt"

    def test_ensure_outdir_creates_nested(self, tmp_path):
        """Nested output directories are created."""
        config = OutputConfig(outdir=tmp_path / "a" / "b")
        config.ensure_outdir()
        assert (tmp_path / "a" / "b").is_dir()


class TestKernelConfig:
    def test_defaults_are_valid(self):
        """The default kernel configuration validates."""
        config = KernelConfig()
        assert config.block_size == DEFAULT_BLOCK_SIZE
        assert config.use_native is True
        config.validate()

    @pytest.mark.parametrize("block_size", [0, -10])
    def test_non_positive_block_size(self, block_size):
        """Zero or negative block sizes are rejected."""
        with pytest.raises(ConfigurationError, match="block_size must be positive"):
            KernelConfig(block_size=block_size).validate()

    @pytest.mark.parametrize("block_size", [1.5, "100", True])
    def test_non_integer_block_size(self, block_size):
        """Block sizes must be integers."""
        with pytest.raises(ConfigurationError, match="block_size must be an integer"):
            KernelConfig(block_size=block_size).validate()

    def test_zero_workers(self):
        """At least one worker is required."""
        with pytest.raises(ConfigurationError, match="n_workers"):
            KernelConfig(n_workers=0).validate()
