"""
Tests for provenance_config: loading, validation and the kernel bridges.
"""

import logging

import pytest
import yaml

from provenance_config import get_tracer_config
from provenance_config.bridges import apply_logging, build_significance, build_tracer
from provenance_config.loader import compute_checksum, parse_tracer_config
from provenance_config.schema import TracerConfig
from provenance_kernel.domain.significance import PoissonSignificance, RatioSignificance
from provenance_kernel.logging_config import configure_logging, reset_logging
from provenance_kernel.services.causal_tracer import CausalTracer


def _write(tmp_path, data, name="tracer.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaultConfig:
    """The bundled default configuration set."""

    def test_defaults(self):
        config = get_tracer_config()

        assert config.config_id == "default"
        assert config.default_max_depth == 100
        assert config.default_min_occurrences == 5
        assert config.default_lookup_limit == 100
        assert config.fetch_workers == 1
        assert config.traversal_strategy == "bfs"
        assert config.significance_model == "poisson"
        assert config.baseline_firing_rate == 0.05
        assert config.log_level == "INFO"
        assert len(config.checksum) == 64

    def test_config_trace_logged(self, captured_logs):
        config = get_tracer_config()

        record = next(r for r in captured_logs() if r["message"] == "PROVENANCE_CONFIG_TRACE")
        assert record["config_id"] == "default"
        assert record["checksum"] == config.checksum
        assert record["traversal_strategy"] == "bfs"


class TestLoadFromFile:
    """Overrides from a YAML file."""

    def test_overrides(self, tmp_path):
        path = _write(
            tmp_path,
            {
                "config_id": "deep-audit",
                "version": 3,
                "tracer": {"default_max_depth": 12, "fetch_workers": 4},
                "significance": {"model": "ratio", "baseline_firing_rate": 0.1},
                "logging": {"level": "debug"},
            },
        )
        config = get_tracer_config(path)

        assert config.config_id == "deep-audit"
        assert config.version == 3
        assert config.default_max_depth == 12
        assert config.fetch_workers == 4
        assert config.default_min_occurrences == 5
        assert config.significance_model == "ratio"
        assert config.baseline_firing_rate == 0.1
        assert config.log_level == "DEBUG"

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        config = get_tracer_config(str(path))
        assert config.default_max_depth == TracerConfig().default_max_depth

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_tracer_config(tmp_path / "absent.yaml")

    def test_checksum_tracks_content(self, tmp_path):
        a = get_tracer_config(_write(tmp_path, {"tracer": {"default_max_depth": 10}}, "a.yaml"))
        b = get_tracer_config(_write(tmp_path, {"tracer": {"default_max_depth": 11}}, "b.yaml"))
        c = get_tracer_config(_write(tmp_path, {"tracer": {"default_max_depth": 10}}, "c.yaml"))
        assert a.checksum != b.checksum
        assert a.checksum == c.checksum

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})


class TestValidation:
    """Invalid configuration is rejected at load time."""

    @pytest.mark.parametrize(
        "data",
        [
            {"tracer": {"default_max_depth": 0}},
            {"tracer": {"default_min_occurrences": -1}},
            {"tracer": {"default_lookup_limit": "many"}},
            {"tracer": {"fetch_workers": True}},
            {"tracer": {"traversal_strategy": "dfs"}},
            {"significance": {"model": "bayes"}},
            {"significance": {"baseline_firing_rate": 1.0}},
            {"logging": {"level": "LOUD"}},
            {"version": 0},
        ],
    )
    def test_rejected(self, data):
        with pytest.raises(ValueError):
            parse_tracer_config(data)

    def test_unknown_section(self):
        with pytest.raises(ValueError, match="Unknown configuration sections"):
            parse_tracer_config({"metrics": {"enabled": True}})

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown keys in section 'tracer'"):
            parse_tracer_config({"tracer": {"max_depth": 3}})

    def test_section_must_be_mapping(self):
        with pytest.raises(ValueError):
            parse_tracer_config({"tracer": [1, 2]})

    def test_root_must_be_mapping(self):
        with pytest.raises(ValueError):
            parse_tracer_config(["tracer"])


class TestBridges:
    """TracerConfig -> kernel objects."""

    def test_build_significance(self):
        assert isinstance(build_significance(TracerConfig()), PoissonSignificance)
        ratio = build_significance(
            TracerConfig(significance_model="ratio", baseline_firing_rate=0.2)
        )
        assert isinstance(ratio, RatioSignificance)
        assert ratio.baseline_firing_rate == 0.2

    def test_build_tracer_applies_defaults(self, memory_store, clock, causal_graph):
        tracer = build_tracer(TracerConfig(default_max_depth=2), memory_store, clock)

        assert isinstance(tracer, CausalTracer)
        path = tracer.trace_causality(causal_graph.output_id, max_depth=0)
        assert path.depth == 2
        assert path.traced_at == clock.now()

    def test_build_tracer_lookup_limit(self, memory_store, clock, recorder):
        for _ in range(4):
            recorder.record_spike_event(
                population_id="v1", neuron_indices=[1], pattern_hash="fp"
            )
            clock.tick()
        tracer = build_tracer(TracerConfig(default_lookup_limit=2), memory_store, clock)
        assert len(tracer.query_by_pattern_hash("fp").nodes) == 2

    def test_apply_logging(self):
        reset_logging()
        try:
            apply_logging(TracerConfig(log_level="ERROR"))
            assert logging.getLogger("provenance_kernel").level == logging.ERROR
        finally:
            reset_logging()
            configure_logging(level=logging.DEBUG)
