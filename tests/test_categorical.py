"""
test_categorical.py - Tests for Categorical Distributions

Tests cover:
- PMF validation at construction, per-entry edits and unlock
- The LOCKED/UNLOCKED edit state machine
- Range mapping of raw ordinals (K=5 over [10,11] + [20,22])
- Bernoulli outcomes (collapsed and drawn)
- Discrete uniform bounds, categories and midpoints
- Cumulative-scan overflow recovery
"""

from enum import Enum

import pytest

from stoch_lab import (
    Bernoulli,
    Binary,
    CustomCategorical,
    DistributionLockedError,
    InvalidParameterError,
    LockState,
    ProtocolViolationError,
    Range,
    UniformDiscrete,
)

from conftest import FixedDrawSampler, ScriptedOrdinalSampler


class Colour(Enum):
    RED = 1
    GREEN = 2
    BLUE = 3


def register(run, item, item_id="item"):
    return run.register_item("Model", item_id, item)


class TestPmfValidation:
    """Tests for custom categorical probability mass functions."""

    @pytest.mark.parametrize("pmf", [
        [0.2, 0.3, 0.5],
        [0.2, 0.3, 0.5005],
        [0.2, 0.3, 0.4995],
        [1.0],
    ])
    def test_sum_within_tolerance(self, pmf):
        """Test sums within 0.001 of 1 are accepted."""
        dist = CustomCategorical(pmf)
        assert dist.k == len(pmf)
        assert dist.lock_state is LockState.UNLOCKED

    @pytest.mark.parametrize("pmf", [
        [0.2, 0.3, 0.6],
        [0.2, 0.3, 0.498],
        [0.5, 0.5, 0.01],
    ])
    def test_sum_outside_tolerance_raises(self, pmf):
        """Test sums further than 0.001 from 1 are rejected."""
        with pytest.raises(InvalidParameterError, match="outside tolerance"):
            CustomCategorical(pmf)

    def test_entry_outside_unit_interval_raises(self):
        """Test negative or >1 entries are rejected even if the sum is 1."""
        with pytest.raises(InvalidParameterError, match="outside"):
            CustomCategorical([1.5, -0.5])

    def test_length_must_match_category(self):
        """Test the PMF has one entry per enum member."""
        with pytest.raises(InvalidParameterError, match="K \\(3\\)"):
            CustomCategorical([0.5, 0.5], category=Colour)

    def test_set_probability_locks_until_consistent(self):
        """Test per-entry edits lock and unlock re-checks the sum."""
        dist = CustomCategorical([0.5, 0.5, 0.0], category=Colour)
        dist.set_probability(Colour.RED, 0.2)
        assert dist.is_locked

        with pytest.raises(InvalidParameterError, match="outside tolerance"):
            dist.unlock()
        assert dist.is_locked

        dist.set_probability(3, 0.3)
        dist.unlock()
        assert dist.pmf.tolist() == [0.2, 0.5, 0.3]

    def test_set_probability_checks_entry(self):
        """Test an out-of-range probability is rejected without locking."""
        dist = CustomCategorical([0.5, 0.5])
        with pytest.raises(InvalidParameterError):
            dist.set_probability(1, 1.2)
        with pytest.raises(InvalidParameterError):
            dist.set_probability(3, 0.1)
        assert not dist.is_locked

    def test_set_pmf_is_atomic(self):
        """Test replacing the PMF validates first and keeps the lock state."""
        dist = CustomCategorical([0.5, 0.5])
        with pytest.raises(InvalidParameterError):
            dist.set_pmf([0.9, 0.9])
        assert dist.pmf.tolist() == [0.5, 0.5]

        dist.set_pmf([0.1, 0.9])
        assert dist.pmf.tolist() == [0.1, 0.9]
        assert not dist.is_locked


class TestLocking:
    """Tests for the edit state machine."""

    def test_sampling_locked_raises(self, run):
        """Test a locked distribution refuses to sample."""
        dist = register(run, CustomCategorical([0.5, 0.5]))
        dist.lock()
        with pytest.raises(DistributionLockedError, match="locked"):
            dist.sample()
        dist.unlock()
        assert dist.sample() in (1, 2)

    def test_editing_context(self):
        """Test editing() locks for the block and unlocks after."""
        dist = UniformDiscrete(1, 5)
        with dist.editing():
            assert dist.is_locked
            dist.clear_ranges()
            dist.add_range(10, 14)
        assert not dist.is_locked
        assert dist.bounds == (10, 14)

    def test_editing_context_error_leaves_locked(self):
        """Test a failing edit block leaves the distribution locked."""
        dist = UniformDiscrete(1, 5)
        with pytest.raises(InvalidParameterError):
            with dist.editing():
                dist.clear_ranges()
                dist.add_range(1, 9)
        assert dist.is_locked

    def test_incomplete_ranges_fail_unlock(self):
        """Test unlocking with ranges covering fewer than K outcomes fails."""
        dist = CustomCategorical([0.2] * 5)
        dist.add_range(10, 11)
        with pytest.raises(InvalidParameterError, match="K is 5"):
            dist.unlock()


class TestRanges:
    """Tests for mapping raw ordinals onto integer ranges."""

    def test_ranges_accumulate(self):
        """Test add_range returns the running total and locks."""
        dist = CustomCategorical([0.2] * 5)
        assert dist.add_range(10, 11) == 2
        assert dist.add_range(20, 22) == 5
        assert dist.ranges == (Range(10, 11), Range(20, 22))
        assert dist.uses_mapped_ranges
        assert dist.get_sub_range(1) == Range(20, 22)
        assert dist.get_sub_range(2) is None

    def test_exceeding_k_raises(self):
        """Test ranges may not cover more than K outcomes."""
        dist = CustomCategorical([0.2] * 5)
        dist.add_range(10, 11)
        with pytest.raises(InvalidParameterError, match="exceeding K=5"):
            dist.add_range(20, 23)
        assert dist.ranges_entries == 2

    def test_range_mapping_order(self, make_run):
        """Test raw ordinals 1..5 map to 10, 11, 20, 21, 22."""
        dist = UniformDiscrete(1, 5)
        with dist.editing():
            dist.clear_ranges()
            dist.add_range(10, 11)
            dist.add_range(20, 22)
        register(make_run(sampler=ScriptedOrdinalSampler([1, 2, 3, 4, 5])), dist)

        assert [dist.sample_int() for _ in range(5)] == [10, 11, 20, 21, 22]

    def test_pmf_scan_through_ranges(self, make_run, fixed_draw_sampler):
        """Test custom PMF draws walk the same range mapping."""
        dist = CustomCategorical([0.2] * 5)
        with dist.editing():
            dist.add_range(10, 11)
            dist.add_range(20, 22)
        register(make_run(sampler=fixed_draw_sampler), dist)

        values = []
        for draw in (0.1, 0.3, 0.5, 0.7, 0.9):
            fixed_draw_sampler.draw = draw
            values.append(dist.sample_int())
        assert values == [10, 11, 20, 21, 22]

    def test_no_ranges_returns_raw_ordinal(self, make_run):
        """Test without ranges the 1..K ordinal is returned unchanged."""
        dist = register(make_run(sampler=ScriptedOrdinalSampler([4, 2])),
                        UniformDiscrete(1, 5))
        assert dist.sample_int() == 4
        dist.add_range(0, 1)
        dist.clear_ranges()
        dist.unlock()
        assert dist.sample_int() == 2

    def test_clear_ranges_revises_k(self):
        """Test K can change when no category is bound."""
        dist = CustomCategorical([0.5, 0.5])
        dist.clear_ranges(3)
        assert dist.k == 3
        dist.set_pmf([0.2, 0.3, 0.5])
        dist.unlock()

    def test_clear_ranges_with_category_keeps_k(self):
        """Test K is fixed by a bound category."""
        dist = CustomCategorical([0.2, 0.3, 0.5], category=Colour)
        with pytest.raises(InvalidParameterError, match="Can't change K"):
            dist.clear_ranges(4)
        dist.clear_ranges(3)


class TestBernoulli:
    """Tests for Bernoulli trials."""

    @pytest.mark.parametrize("p,expected", [
        (0.3, Binary.FAILURE),
        (0.49, Binary.FAILURE),
        (0.5, Binary.SUCCESS),
        (0.9, Binary.SUCCESS),
    ])
    def test_collapse(self, collapsed_run, p, expected):
        """Test collapse gives SUCCESS iff p >= 0.5."""
        trial = register(collapsed_run, Bernoulli(p))
        assert trial.sample() is expected

    @pytest.mark.parametrize("draw,expected", [
        (0.2, Binary.FAILURE),
        (0.69, Binary.FAILURE),
        (0.71, Binary.SUCCESS),
    ])
    def test_drawn_outcome(self, make_run, draw, expected):
        """Test drawn outcomes from a stubbed unit draw with p=0.3."""
        trial = register(make_run(sampler=FixedDrawSampler(draw)), Bernoulli(0.3))
        assert trial.sample() is expected
        assert trial.sample_success() == (expected is Binary.SUCCESS)

    def test_p_edit_keeps_lock_state(self):
        """Test changing p is validated whole and does not lock."""
        trial = Bernoulli(0.3)
        trial.p = 0.6
        assert trial.p == 0.6
        assert not trial.is_locked
        with pytest.raises(InvalidParameterError):
            trial.p = 1.2
        assert trial.p == 0.6

    def test_integer_ranges(self, collapsed_run):
        """Test a Bernoulli can be sampled as 0/1 via a range."""
        trial = Bernoulli(0.8)
        with trial.editing():
            trial.add_range(0, 1)
        register(collapsed_run, trial)
        assert trial.sample_int() == 1
        assert trial.sample() is Binary.SUCCESS

    def test_repr_and_params(self):
        """Test the compact notation and parameter view."""
        trial = Bernoulli(0.3)
        assert repr(trial) == "Bernoulli(0.3)"
        assert trial.params()["p"] == 0.3
        assert trial.params()["category"] == "Binary"


class TestUniformDiscrete:
    """Tests for discrete uniform distributions."""

    def test_integer_bounds(self):
        """Test an integer range sets K and bounds."""
        die = UniformDiscrete(1, 6)
        assert die.k == 6
        assert die.bounds == (1, 6)
        assert not die.uses_mapped_ranges
        assert repr(die) == "DiscreteUniform(1,6)"

    def test_shifted_bounds_use_range(self):
        """Test bounds not starting at 1 are mapped through a range."""
        dist = UniformDiscrete(10, 15)
        assert dist.ranges == (Range(10, 15),)
        assert dist.bounds == (10, 15)

    def test_set_range(self):
        """Test the range can be replaced in one step."""
        dist = UniformDiscrete(1, 6)
        dist.set_range(3, 4)
        assert dist.k == 2
        assert dist.bounds == (3, 4)
        assert not dist.is_locked

    def test_invalid_bounds(self):
        """Test inverted or missing bounds are rejected."""
        with pytest.raises(InvalidParameterError):
            UniformDiscrete(6, 1)
        with pytest.raises(InvalidParameterError):
            UniformDiscrete(1)
        with pytest.raises(InvalidParameterError):
            UniformDiscrete(1, 3, category=Colour)

    @pytest.mark.parametrize("dist,expected", [
        (UniformDiscrete(1, 6), 3),
        (UniformDiscrete(1, 5), 3),
        (UniformDiscrete(10, 15), 12),
        (UniformDiscrete(4, 4), 4),
    ])
    def test_collapse_midpoint(self, collapsed_run, dist, expected):
        """Test collapse picks (1+K)//2, the lower middle on ties."""
        register(collapsed_run, dist)
        assert dist.sample() == expected

    def test_category_variant(self, collapsed_run):
        """Test the enum variant returns members and collapses to the middle."""
        colour = register(collapsed_run, UniformDiscrete(category=Colour))
        assert colour.sample() is Colour.GREEN
        assert colour.bounds is None
        assert repr(colour) == "DiscreteUniform(Colour)"

    def test_category_drawn(self, make_run):
        """Test drawn ordinals map onto enum declaration order."""
        colour = register(make_run(sampler=ScriptedOrdinalSampler([3, 1])),
                          UniformDiscrete(category=Colour))
        assert colour.sample_category() is Colour.BLUE
        assert colour.sample_category() is Colour.RED

    def test_sample_category_without_enum_raises(self, collapsed_run):
        """Test sample_category needs a bound enum."""
        die = register(collapsed_run, UniformDiscrete(1, 6))
        with pytest.raises(ProtocolViolationError, match="not defined to return a category"):
            die.sample_category()


class TestCustomCategorical:
    """Tests for PMF sampling."""

    def test_collapse_uses_half(self, collapsed_run):
        """Test collapse scans the cumulative PMF at 0.5."""
        dist = register(collapsed_run, CustomCategorical([0.2, 0.2, 0.6], category=Colour))
        assert dist.sample() is Colour.BLUE

    def test_draw_on_boundary(self, make_run):
        """Test a draw equal to a cumulative sum selects that outcome."""
        dist = register(make_run(sampler=FixedDrawSampler(0.25)), CustomCategorical([0.25, 0.75]))
        assert dist.sample() == 1

    def test_overflow_defaults_to_last(self, make_run, caplog):
        """Test a draw above the rounded total falls back to the last outcome."""
        dist = register(make_run(sampler=FixedDrawSampler(0.9999)),
                        CustomCategorical([0.3, 0.3, 0.3995]))
        assert dist.sample() == 3
        assert "Overflowed lookup table" in caplog.text

    def test_copy_preserves_structure(self):
        """Test copies keep PMF, ranges and lock state, independently."""
        dist = CustomCategorical([0.2] * 5)
        dist.add_range(10, 11)
        copy = dist.create_unregistered_copy()

        assert copy.is_locked
        assert copy.ranges == (Range(10, 11),)
        copy.add_range(20, 22)
        copy.unlock()
        assert dist.ranges == (Range(10, 11),)

    def test_repr(self):
        """Test the compact notation."""
        assert repr(CustomCategorical([0.2, 0.8])) == "CustomPMF[0.2,0.8]"
