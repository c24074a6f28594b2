"""
test_integration.py - End-to-End Tests

Tests cover:
- A model declaring accessors, loading overrides from its inputs directory
  and saving the run's settings
- Collapsed vs. drawn outcomes for the same model quantity
- Several runs of one model live at once in different threads
"""

from concurrent.futures import ThreadPoolExecutor
from enum import Enum

from stoch_lab import (
    Accessor,
    Bernoulli,
    Binary,
    CustomCategorical,
    OverrideConfig,
    RunDirectory,
    RunRegistry,
    SampleMode,
    STOCH_CONTROL_FILE,
    Triangular,
    load_run_settings,
    save_run_settings,
)

from conftest import FixedDrawSampler


class Outcome(Enum):
    RECOVERED = 1
    READMITTED = 2
    DIED = 3


class Patient:
    """Model class with shared accessors."""

    readmit = Accessor()
    outcome = Accessor()
    stay = Accessor(item_id="lengthOfStay")

    def __init__(self, run, p_readmit=0.3):
        self.run = run
        Patient.readmit.add_for_run(run, Bernoulli(p_readmit))
        Patient.outcome.add_for_run(run, CustomCategorical([0.7, 0.2, 0.1], category=Outcome))
        Patient.stay.add_for_run(run, Triangular(1.0, 3.0, 14.0))

    def readmitted(self):
        return Patient.readmit.get_for_run(self.run).sample()

    def discharge(self):
        return (Patient.outcome.get_for_run(self.run).sample(),
                Patient.stay.get_for_run(self.run).sample())


class TestCollapseVersusDraw:
    """Tests for the same quantity under different modes."""

    def test_collapsed_bernoulli_fails_below_half(self, make_run):
        """Test Bernoulli(0.3) collapses to FAILURE."""
        run = make_run("collapsed", overrides={"Patient.readmit": SampleMode.COLLAPSE_MID})
        patient = Patient(run)
        assert patient.readmitted() is Binary.FAILURE

    def test_drawn_bernoulli_follows_draw(self, make_run):
        """Test a fresh instance without overrides follows the sampler's draw."""
        sampler = FixedDrawSampler(0.2)
        run = make_run("drawn", sampler=sampler)
        patient = Patient(run)

        assert patient.readmitted() is Binary.FAILURE
        sampler.draw = 0.9
        assert patient.readmitted() is Binary.SUCCESS

    def test_collapsed_discharge(self, make_run):
        """Test the collapsed outcome and stay are the midpoint values."""
        run = make_run("collapsed", overrides={"ALL": SampleMode.COLLAPSE_MID})
        assert Patient(run).discharge() == (Outcome.RECOVERED, 6.0)


class TestModelLifecycle:
    """Tests for a complete model run."""

    def test_inputs_dir_overrides_and_settings(self, tmp_path):
        """Test overrides from the inputs directory end up in saved settings."""
        (tmp_path / STOCH_CONTROL_FILE).write_text(
            "# collapse everything but the stay\n"
            "ALL = COLLAPSE_MID\n"
            "Patient.lengthOfStay = NORMAL\n"
        )
        overrides = OverrideConfig.from_inputs_dir(tmp_path)
        directory = RunDirectory("ward")

        run = directory.open_run(overrides=overrides, seed=9)
        patient = Patient(run, p_readmit=0.6)
        assert patient.readmitted() is Binary.SUCCESS
        outcome, stay = patient.discharge()
        assert outcome is Outcome.RECOVERED
        assert 1.0 <= stay <= 14.0

        path = save_run_settings(run.finalise_registrations(), tmp_path / "settings.json",
                                 run_id=run.run_id)
        directory.close_run(run.run_id)

        modes = {s.qualified_id: s.sample_mode for s in load_run_settings(path).items}
        assert modes == {
            "Patient.readmit": SampleMode.COLLAPSE_MID,
            "Patient.outcome": SampleMode.COLLAPSE_MID,
            "Patient.lengthOfStay": SampleMode.NORMAL,
        }
        assert Patient.readmit.run_ids() == []


class TestConcurrentRuns:
    """Tests for several live runs of one model."""

    def test_threads_see_their_own_run(self):
        """Test each thread samples the item registered for its own run."""
        directory = RunDirectory("ward")
        runs = [
            directory.open_run(
                f"run-{i}",
                overrides=OverrideConfig.from_mapping(
                    {"ALL": SampleMode.COLLAPSE_MID if i % 2 else SampleMode.NORMAL}
                ),
                seed=i,
            )
            for i in range(8)
        ]

        def simulate(run):
            patient = Patient(run, p_readmit=0.9)
            outcomes = [patient.readmitted() for _ in range(50)]
            return run.run_id, (Patient.readmit.mode_for_run(run), outcomes)

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = dict(pool.map(simulate, runs))

        for i in range(8):
            mode, outcomes = results[f"run-{i}"]
            if i % 2:
                assert mode is SampleMode.COLLAPSE_MID
                assert set(outcomes) == {Binary.SUCCESS}
            else:
                assert mode is SampleMode.NORMAL
                assert len(outcomes) == 50
        assert Patient.readmit.run_ids() == sorted(f"run-{i}" for i in range(8))

        for run in runs:
            directory.close_run(run.run_id)
        assert Patient.readmit.run_ids() == []

    def test_run_registry_context(self):
        """Test a registry used as a context manager releases accessors."""
        with RunRegistry("ctx-run", seed=1) as run:
            Patient(run)
            assert Patient.stay.has_run("ctx-run")
        assert not Patient.stay.has_run("ctx-run")
