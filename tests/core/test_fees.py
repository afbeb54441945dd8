import pytest

from bundlecast.core.fees import project_max_base_fee, project_next_base_fee


GWEI = 10**9


class TestProjectMaxBaseFee:
    def test_zero_blocks_returns_input(self):
        assert project_max_base_fee(37 * GWEI, 0) == 37 * GWEI

    def test_single_block_rounds_up(self):
        assert project_max_base_fee(1000, 1) == 1126
        assert project_max_base_fee(0, 1) == 1

    def test_compounds_per_block(self):
        assert project_max_base_fee(1000, 2) == 1126 * 1125 // 1000 + 1

    def test_monotonic_in_blocks_ahead(self):
        for base_fee in (0, 1, 7, 100 * GWEI):
            projections = [project_max_base_fee(base_fee, blocks) for blocks in range(10)]
            assert projections == sorted(projections)

    def test_negative_blocks_rejected(self):
        with pytest.raises(ValueError):
            project_max_base_fee(GWEI, -1)


class TestProjectNextBaseFee:
    @pytest.mark.parametrize("base_fee", [0, 1, 12_345, 100 * GWEI])
    @pytest.mark.parametrize("gas_limit", [2, 30_000_000, 29_999_998])
    def test_at_target_is_unchanged(self, base_fee, gas_limit):
        assert project_next_base_fee(base_fee, gas_limit // 2, gas_limit) == base_fee

    def test_full_block_increases_by_one_eighth(self):
        assert project_next_base_fee(800, 30_000_000, 30_000_000) == 900

    def test_empty_block_decreases_by_one_eighth(self):
        assert project_next_base_fee(800, 0, 30_000_000) == 700

    def test_truncates_each_division(self):
        # 1000 * 1 // 15_000_000 == 0, so a tiny overshoot leaves the fee unchanged
        assert project_next_base_fee(1000, 15_000_001, 30_000_000) == 1000
        # 100 gwei * 3M // 15M == 20 gwei; // 8 == 2.5 gwei
        assert project_next_base_fee(100 * GWEI, 18_000_000, 30_000_000) == 100 * GWEI + 2_500_000_000

    def test_rejects_degenerate_gas_limit(self):
        with pytest.raises(ValueError):
            project_next_base_fee(GWEI, 0, 1)
