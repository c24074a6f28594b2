"""
test_registry.py - Tests for Run Registries and the Run Directory

Tests cover:
- Registration logging and override resolution
- Finalised and closed runs refusing registrations
- Lazy sampler creation and the supports check
- Teardown (end_run, context manager)
- Run id allocation and concurrent directory access
"""

import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest

from stoch_lab import (
    AccessInfo,
    Bernoulli,
    Exponential,
    FixedContinuous,
    InvalidParameterError,
    LookupByEnums,
    Normal,
    NumpySampler,
    Poisson,
    RegistrationError,
    RunDirectory,
    RunRegistry,
    SampleMode,
    UnsupportedDistributionError,
)
from stoch_lab.types import Binary


class TestRegistration:
    """Tests for RunRegistry.register."""

    def test_returns_sampler_and_binds(self, run):
        """Test registration binds identity, sampler and run id."""
        item = Normal(5.0, 1.0)
        run.register_item("Clinic", "service", item)

        assert item.is_registered
        assert item.run_id == "test-run"
        assert item.sampler is run.sampler
        assert item.sample_mode is SampleMode.NORMAL
        assert run.registered_items == [item]
        assert len(run) == 1

    def test_info_log(self, make_run, caplog):
        """Test the set-up message, with the override suffix when overridden."""
        run = make_run("run-7", overrides={"Clinic.service": SampleMode.COLLAPSE_MID})
        run.register_item("Clinic", "service", Normal(5.0, 1.0))
        run.register_item("Clinic", "arrivals", Poisson(2.0))

        messages = [record.getMessage().strip() for record in caplog.records]
        assert (
            "Clinic.service stochastic item N(5.0,1.0) set up for run run-7 "
            "--> overridden sample mode COLLAPSE_MID"
        ) in messages
        assert "Clinic.arrivals stochastic item Poisson(2.0) set up for run run-7" in messages

    def test_overrides_group(self, make_run):
        """Test ALL and Owner.ALL overrides reach registered items."""
        run = make_run("run-1", overrides={"ALL": "COLLAPSE_MID", "Ward.ALL": "NORMAL"})
        clinic = run.register_item("Clinic", "service", Exponential(3.0))
        ward = run.register_item("Ward", "stay", Exponential(3.0))

        assert clinic.sample_mode is SampleMode.COLLAPSE_MID
        assert ward.sample_mode is SampleMode.NORMAL
        assert clinic.sample() == 3.0

    def test_finalised_rejects(self, run):
        """Test no registrations after finalisation."""
        run.register_item("Clinic", "service", Normal(5.0, 1.0))
        snapshots = run.finalise_registrations()

        assert [s.qualified_id for s in snapshots] == ["Clinic.service"]
        assert run.is_finalised
        with pytest.raises(RegistrationError, match="finalised"):
            run.register_item("Clinic", "late", Normal(1.0, 1.0))

    def test_finalise_twice_warns(self, run, caplog):
        """Test a repeated finalisation warns and returns a snapshot again."""
        run.register_item("Clinic", "service", Normal(5.0, 1.0))
        run.finalise_registrations()
        assert len(run.finalise_registrations()) == 1
        assert "already finalised" in caplog.text

    def test_closed_rejects(self, run):
        """Test no registrations after the run ended."""
        run.end_run()
        with pytest.raises(RegistrationError, match="has ended"):
            run.register_item("Clinic", "service", Normal(5.0, 1.0))

    def test_blank_run_id(self):
        """Test run ids must be non-blank strings."""
        with pytest.raises(InvalidParameterError):
            RunRegistry("  ")

    def test_unknown_engine(self):
        """Test an unknown engine name is rejected at construction."""
        with pytest.raises(KeyError):
            RunRegistry("run-1", engine="mersenne")


class TestSamplerBinding:
    """Tests for the run's sampler."""

    def test_lazy_sampler(self):
        """Test the sampler is created on first registration only."""
        created = []

        def factory(seed):
            sampler = NumpySampler(seed)
            created.append(sampler)
            return sampler

        with RunRegistry("run-1", sampler_factory=factory, seed=3) as run:
            assert created == []
            run.register_item("Clinic", "a", Normal(0.0, 1.0))
            run.register_item("Clinic", "b", Normal(0.0, 1.0))
            assert len(created) == 1

    def test_unsupported_in_normal_mode(self, make_run):
        """Test the dummy engine refuses drawn families in NORMAL mode."""
        run = make_run("run-1", engine="dummy")
        with pytest.raises(UnsupportedDistributionError, match="NORMAL"):
            run.register_item("Clinic", "service", Normal(5.0, 1.0))
        assert len(run) == 0

    def test_supported_families_register(self, make_run):
        """Test the dummy engine accepts fixed values."""
        run = make_run("run-1", engine="dummy")
        item = run.register_item("Clinic", "fee", FixedContinuous(12.0))
        assert item.sample() == 12.0

    def test_collapsed_skips_check(self, collapsed_run):
        """Test collapsed items register on a sampler that cannot draw them."""
        item = collapsed_run.register_item("Clinic", "service", Normal(5.0, 1.0))
        assert item.sample() == 5.0

    def test_lookup_checks_leaves(self, make_run):
        """Test a lookup needs every leaf family supported."""
        lookup = LookupByEnums(Binary)
        lookup.put_dist(FixedContinuous(1.0), Binary.FAILURE)
        lookup.put_dist(Bernoulli(0.5), Binary.SUCCESS)
        run = make_run("run-1", engine="dummy")
        with pytest.raises(UnsupportedDistributionError, match="BERNOULLI"):
            run.register_item("Clinic", "odds", lookup)


class TestTeardown:
    """Tests for ending runs."""

    def test_end_run_deregisters(self, run):
        """Test items are unregistered once the run ends."""
        item = run.register_item("Clinic", "service", Normal(5.0, 1.0))
        run.end_run()
        assert not item.is_registered
        assert run.is_closed
        assert len(run) == 0

    def test_end_run_twice_is_fault(self, run):
        """Test a second teardown is an assertion."""
        run.end_run()
        with pytest.raises(AssertionError, match="already ended"):
            run.end_run()

    def test_detach_fault_still_releases_items(self, run, caplog):
        """Test a failed deregistration doesn't leave later items bound."""
        service, arrivals = Normal(5.0, 1.0), Poisson(2.0)
        service_info = AccessInfo("Clinic", "service")
        run.register(service, service_info)
        run.register(arrivals, AccessInfo("Clinic", "arrivals"))
        service_info._detach(run.run_id, service)

        with pytest.raises(AssertionError, match="not registered for run test-run"):
            run.end_run()

        assert run.is_closed
        assert len(run) == 0
        assert not arrivals.is_registered
        assert service.run_id is None
        assert "Deregistering Clinic.service from run test-run" in caplog.text

    def test_item_reusable_after_end(self, make_run):
        """Test an item can be registered again once its run ended."""
        item = Normal(5.0, 1.0)
        first = make_run("run-1")
        first.register_item("Clinic", "service", item)
        first.end_run()
        make_run("run-2").register_item("Clinic", "service", item)
        assert item.run_id == "run-2"

    def test_context_manager(self):
        """Test leaving the block ends the run."""
        with RunRegistry("run-1", seed=1) as run:
            item = run.register_item("Clinic", "service", Normal(5.0, 1.0))
        assert run.is_closed
        assert not item.is_registered


class TestRunDirectory:
    """Tests for RunDirectory."""

    def clock(self):
        return datetime(2024, 3, 9, 14, 5, 7)

    def test_run_id_format(self):
        """Test ids are timestamp, experiment and counter."""
        directory = RunDirectory("clinic", clock=self.clock)
        assert directory.new_run_id() == "20240309140507-clinic-1"
        assert directory.new_run_id() == "20240309140507-clinic-2"

    def test_default_clock_format(self):
        """Test the allocated id shape with the real clock."""
        run_id = RunDirectory("clinic").new_run_id()
        assert re.fullmatch(r"\d{14}-clinic-1", run_id)

    def test_invalid_experiment_name(self):
        """Test experiment names cannot contain whitespace."""
        with pytest.raises(InvalidParameterError):
            RunDirectory("my clinic")

    def test_open_get_close(self):
        """Test the lifecycle of a directory entry."""
        directory = RunDirectory("clinic", clock=self.clock)
        run = directory.open_run(seed=1)
        item = run.register_item("Clinic", "service", Normal(5.0, 1.0))

        assert run.run_id in directory
        assert directory.get(run.run_id) is run
        directory.close_run(run.run_id)

        assert len(directory) == 0
        assert not item.is_registered
        with pytest.raises(RegistrationError, match="No open run"):
            directory.get(run.run_id)
        with pytest.raises(RegistrationError):
            directory.close_run(run.run_id)

    def test_duplicate_open(self):
        """Test an explicit id can only be open once."""
        directory = RunDirectory("clinic")
        directory.open_run("fixed-id")
        with pytest.raises(RegistrationError, match="already open"):
            directory.open_run("fixed-id")
        directory.close_run("fixed-id")

    def test_concurrent_open(self):
        """Test ids stay unique when runs are opened from many threads."""
        directory = RunDirectory("clinic", clock=self.clock)
        with ThreadPoolExecutor(max_workers=8) as pool:
            runs = list(pool.map(lambda _: directory.open_run(), range(50)))

        assert len({run.run_id for run in runs}) == 50
        assert sorted(directory.active_run_ids()) == sorted(run.run_id for run in runs)
        for run in runs:
            directory.close_run(run.run_id)
