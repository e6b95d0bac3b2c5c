"""Tests for the synthetic event generator."""

from datetime import datetime, timedelta, timezone

from cdm_triage.generator.synthetic import OBJECT_CATALOGUE, EventGenerator
from cdm_triage.models.policy import DEFAULT_POLICY
from cdm_triage.random_source import RandomSource
from cdm_triage.triage.classifier import classify

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestEventGenerator:
    def test_same_seed_same_events(self):
        first = EventGenerator(RandomSource(123)).generate(25, DEFAULT_POLICY, NOW)
        second = EventGenerator(RandomSource(123)).generate(25, DEFAULT_POLICY, NOW)
        assert first == second

    def test_different_seed_different_events(self):
        first = EventGenerator(RandomSource(1)).generate(10, DEFAULT_POLICY, NOW)
        second = EventGenerator(RandomSource(2)).generate(10, DEFAULT_POLICY, NOW)
        assert first != second

    def test_ids_are_unique(self):
        events = EventGenerator(RandomSource(7)).generate(100, DEFAULT_POLICY, NOW)
        assert len({e.id for e in events}) == 100
        assert all(e.id.startswith("CDM-2025") for e in events)

    def test_sorted_by_analytic_pc(self):
        events = EventGenerator(RandomSource(7)).generate(100, DEFAULT_POLICY, NOW)
        pcs = [e.pc_analytic for e in events]
        assert pcs == sorted(pcs, reverse=True)

    def test_value_ranges(self):
        events = EventGenerator(RandomSource(42)).generate(200, DEFAULT_POLICY, NOW)
        for e in events:
            assert e.object1 != e.object2
            assert e.object1 in OBJECT_CATALOGUE and e.object2 in OBJECT_CATALOGUE
            assert NOW + timedelta(hours=1) <= e.tca < NOW + timedelta(hours=72)
            assert NOW - timedelta(hours=12) < e.creation_date <= NOW - timedelta(hours=1)
            assert 10 <= e.miss_distance < 5000
            assert 2 <= e.hbr < 15
            assert 1e-9 <= e.pc_analytic < 1e-2
            assert 5000 <= e.relative_speed < 15000
            assert 0.8 <= e.gates.tangency.value < 1.0
            assert e.pc_mc is None

    def test_events_are_classified(self):
        events = EventGenerator(RandomSource(42)).generate(50, DEFAULT_POLICY, NOW)
        for e in events:
            assert classify(e, DEFAULT_POLICY, NOW) == e
