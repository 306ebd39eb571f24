"""
Unit tests for low-level code calculation

Covers the pure relaxation (chains, shared components, cycles) and the
database/cache wrapper that persists codes onto products.
"""
import random

import pytest

from app.services.low_level_code import (
    LLC_WARNING_MESSAGE,
    compute_low_level_codes,
    load_bom_edges,
    relax_low_level_codes,
)
from tests.factories import create_test_bom, create_test_product


class TestRelaxation:
    def test_products_without_edges_stay_at_zero(self):
        result = relax_low_level_codes([1, 2, 3], [])

        assert result.codes == {1: 0, 2: 0, 3: 0}
        assert result.converged
        assert result.warning is None

    def test_chain_assigns_increasing_levels(self):
        result = relax_low_level_codes([1, 2, 3], [(1, 2), (2, 3)])

        assert result.codes == {1: 0, 2: 1, 3: 2}
        assert result.converged

    def test_shared_component_takes_deepest_level(self):
        # 1 uses 2 and 4 directly; 2 uses 4 as well
        result = relax_low_level_codes([1, 2, 4], [(1, 4), (1, 2), (2, 4)])

        assert result.codes[4] == 2

    def test_parent_strictly_below_component_for_every_edge(self):
        edges = [(1, 2), (1, 3), (3, 2), (2, 5), (4, 5)]
        result = relax_low_level_codes([1, 2, 3, 4, 5], edges)

        for parent, component in edges:
            assert result.codes[parent] < result.codes[component]

    @pytest.mark.parametrize("seed", [1, 7, 42, 2024, 31337])
    def test_random_acyclic_structure_settles(self, seed):
        rng = random.Random(seed)
        ids = list(range(1, 41))
        # edges only point to a later id, so the structure has no cycle
        edges = [
            (parent, component)
            for parent in ids
            for component in ids[parent:]
            if rng.random() < 0.1
        ]
        rng.shuffle(edges)

        result = relax_low_level_codes(ids, edges)

        assert result.converged
        assert result.warning is None
        for parent, component in edges:
            assert result.codes[parent] < result.codes[component]

    def test_edges_to_unknown_products_are_ignored(self):
        result = relax_low_level_codes([1, 2], [(1, 2), (2, 99)])

        assert result.codes == {1: 0, 2: 1}

    def test_cycle_hits_iteration_cap_with_warning(self):
        result = relax_low_level_codes([1, 2], [(1, 2), (2, 1)], max_iterations=5)

        assert not result.converged
        assert result.iterations == 5
        assert result.warning["type"] == "Low-Level Code Calculation Warning"
        assert result.warning["message"] == LLC_WARNING_MESSAGE


class TestComputeLowLevelCodes:
    def test_codes_persisted_and_cached(self, db_session, cache):
        fg = create_test_product(db_session, make_or_buy="make")
        sub = create_test_product(db_session, make_or_buy="make")
        raw = create_test_product(db_session)
        create_test_bom(db_session, fg, [(sub, 1), (raw, 1)])
        create_test_bom(db_session, sub, [(raw, 3)])

        result = compute_low_level_codes(db_session, 1, cache)

        assert result.converged and not result.from_cache
        assert (fg.low_level_code, sub.low_level_code, raw.low_level_code) == (0, 1, 2)
        assert cache.get_cached_low_level_codes(1) == {fg.id: 0, sub.id: 1, raw.id: 2}

    def test_second_call_served_from_cache(self, db_session, cache):
        fg = create_test_product(db_session, make_or_buy="make")
        raw = create_test_product(db_session)
        create_test_bom(db_session, fg, [(raw, 1)])
        compute_low_level_codes(db_session, 1, cache)

        result = compute_low_level_codes(db_session, 1, cache)

        assert result.from_cache
        assert result.codes[raw.id] == 1

    def test_draft_boms_and_inactive_products_do_not_count(self, db_session, cache):
        fg = create_test_product(db_session, make_or_buy="make")
        raw = create_test_product(db_session)
        retired = create_test_product(db_session, is_active=False)
        create_test_bom(db_session, fg, [(raw, 1)], status="draft")
        create_test_bom(db_session, fg, [(retired, 1)], is_default=False)

        assert load_bom_edges(db_session, 1) == []
        assert compute_low_level_codes(db_session, 1, cache).codes[raw.id] == 0

    def test_cycle_is_not_cached(self, db_session, cache):
        a = create_test_product(db_session, make_or_buy="make")
        b = create_test_product(db_session, make_or_buy="make")
        create_test_bom(db_session, a, [(b, 1)])
        create_test_bom(db_session, b, [(a, 1)])

        result = compute_low_level_codes(db_session, 1, cache)

        assert not result.converged
        assert result.warning is not None
        assert cache.get_cached_low_level_codes(1) is None

    def test_other_company_edges_are_ignored(self, db_session, cache):
        fg = create_test_product(db_session, make_or_buy="make", company_id=2)
        raw = create_test_product(db_session, company_id=2)
        create_test_bom(db_session, fg, [(raw, 1)])

        assert load_bom_edges(db_session, 1) == []
        assert load_bom_edges(db_session, 2) == [(fg.id, raw.id)]
