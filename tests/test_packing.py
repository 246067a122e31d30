"""Tests for the parameter packer."""

import numpy as np
import pytest

from pln_variational import ConfigurationError, Packer, ParameterGroup

# ------------------------------------------------------------------ #
# Shared fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def rng():
    return np.random.default_rng(42)


@pytest.fixture()
def packer():
    return Packer([("Theta", (3, 2)), ("M", (5, 3)), ("S", (5,))])


# ------------------------------------------------------------------ #
# TestLayout
# ------------------------------------------------------------------ #


class TestLayout:
    def test_literal_example(self):
        packer = Packer([("a", (0,)), ("b", (4, 10)), ("c", (7,)), ("d", (7,))])
        assert [g.offset for g in packer.groups] == [0, 0, 40, 47]
        assert [g.size for g in packer.groups] == [0, 40, 7, 7]
        assert packer.size == 54

    def test_offsets_are_cumulative_sizes(self, rng):
        shapes = [(int(rng.integers(0, 5)), int(rng.integers(1, 5))) for _ in range(6)]
        packer = Packer((f"g{i}", shape) for i, shape in enumerate(shapes))
        sizes = [r * c for r, c in shapes]
        expected = np.concatenate([[0], np.cumsum(sizes)[:-1]])
        assert [g.offset for g in packer.groups] == expected.tolist()
        assert packer.size == sum(sizes)

    def test_slices_cover_vector_exactly(self, packer):
        covered = np.zeros(packer.size, dtype=int)
        for g in packer.groups:
            covered[g.slice] += 1
        assert np.all(covered == 1)

    def test_from_arrays_uses_insertion_order(self):
        packer = Packer.from_arrays({"S": np.zeros(4), "M": np.zeros((4, 2))})
        assert packer.names == ("S", "M")
        assert packer.group("M").offset == 4

    def test_group_by_position_and_name(self, packer):
        assert packer.group(1) is packer.group("M")
        assert isinstance(packer.group(0), ParameterGroup)
        assert packer.group("Theta").is_matrix
        assert not packer.group("S").is_matrix
        assert len(packer) == 3

    def test_unknown_name_raises_key_error(self, packer):
        with pytest.raises(KeyError, match="Omega"):
            packer.group("Omega")

    def test_duplicate_name_rejected(self):
        with pytest.raises(ValueError, match="duplicate"):
            Packer([("M", (2,)), ("M", (3,))])

    def test_three_dimensional_reference_rejected(self):
        with pytest.raises(ValueError, match="vector or a matrix"):
            Packer([("T", np.zeros((2, 2, 2)))])

    def test_repr_shows_layout(self, packer):
        assert repr(packer) == "Packer([Theta(3, 2)@0, M(5, 3)@6, S(5,)@21], size=26)"


# ------------------------------------------------------------------ #
# TestPackUnpack
# ------------------------------------------------------------------ #


class TestPackUnpack:
    def test_round_trip_every_group(self, packer, rng):
        packed = packer.empty()
        values = {g.name: rng.standard_normal(g.shape) for g in packer.groups}
        for name, value in values.items():
            packer.pack(name, packed, value)
        for name, value in values.items():
            np.testing.assert_array_equal(packer.unpack(name, packed), value)

    def test_pack_all_unpack_all_round_trip(self, packer, rng):
        values = {g.name: rng.standard_normal(g.shape) for g in packer.groups}
        packed = packer.pack_all(values)
        assert packed.shape == (packer.size,)
        unpacked = packer.unpack_all(packed)
        assert list(unpacked) == list(packer.names)
        for name in values:
            np.testing.assert_array_equal(unpacked[name], values[name])

    def test_matrices_are_row_major(self):
        packer = Packer([("A", (2, 3))])
        packed = packer.empty()
        packer.pack("A", packed, np.arange(6.0).reshape(2, 3))
        np.testing.assert_array_equal(packed, np.arange(6.0))

    def test_unpack_returns_view(self, packer, rng):
        packed = rng.standard_normal(packer.size)
        M = packer.unpack("M", packed)
        assert np.shares_memory(M, packed)
        M[0, 0] = 123.0
        assert packed[packer.group("M").offset] == 123.0

    def test_pack_writes_only_its_slice(self, packer):
        packed = np.zeros(packer.size)
        packer.pack("M", packed, np.ones((5, 3)))
        m = packer.group("M")
        assert packed[m.slice].sum() == 15.0
        assert packed.sum() == 15.0

    def test_pack_accepts_reorganised_shape(self, packer):
        packed = np.zeros(packer.size)
        packer.pack("S", packed, np.arange(5.0).reshape(5, 1))
        np.testing.assert_array_equal(packer.unpack("S", packed), np.arange(5.0))

    def test_pack_rejects_wrong_element_count(self, packer):
        with pytest.raises(ValueError, match="parameter group 'S'"):
            packer.pack("S", np.zeros(packer.size), np.zeros(4))

    def test_zero_size_group(self):
        packer = Packer([("Theta", (3, 0)), ("M", (2, 3))])
        packed = np.arange(6.0)
        theta = packer.unpack("Theta", packed)
        assert theta.shape == (3, 0)
        assert packer.group("Theta").slice == slice(0, 0)
        packer.pack("Theta", packed, np.zeros((3, 0)))
        np.testing.assert_array_equal(packer.unpack("M", packed), np.arange(6.0).reshape(2, 3))


# ------------------------------------------------------------------ #
# TestTolerances
# ------------------------------------------------------------------ #


class TestTolerances:
    def test_scalar_broadcast_fills_slice(self, packer):
        packed = np.zeros(packer.size)
        packer.pack_scalar_or_structured("M", packed, 1e-4)
        m = packer.group("M")
        assert np.all(packed[m.slice] == 1e-4)
        assert np.all(np.delete(packed, np.arange(m.offset, m.offset + m.size)) == 0.0)

    def test_structured_value_copied(self, packer, rng):
        packed = np.zeros(packer.size)
        tol = rng.uniform(size=(3, 2))
        packer.pack_scalar_or_structured("Theta", packed, tol)
        np.testing.assert_array_equal(packer.unpack("Theta", packed), tol)

    def test_wrong_shape_is_configuration_error(self, packer):
        with pytest.raises(ConfigurationError, match="expected \\(5, 3\\)"):
            packer.pack_scalar_or_structured("M", np.zeros(packer.size), np.zeros((3, 5)))

    @pytest.mark.parametrize("value", ["fast", {"M": 1.0}, True, object()])
    def test_other_inputs_are_configuration_errors(self, packer, value):
        with pytest.raises(ConfigurationError):
            packer.pack_scalar_or_structured("M", np.zeros(packer.size), value)

    def test_build_tolerance_scalar(self, packer):
        tol = packer.build_tolerance(1e-8)
        assert tol.shape == (packer.size,)
        assert np.all(tol == 1e-8)

    def test_build_tolerance_by_group(self, packer):
        tol = packer.build_tolerance(
            {"Theta": 1e-3, "M": np.full((5, 3), 1e-5), "S": 0.0}
        )
        np.testing.assert_array_equal(packer.unpack("Theta", tol), np.full((3, 2), 1e-3))
        np.testing.assert_array_equal(packer.unpack("M", tol), np.full((5, 3), 1e-5))
        np.testing.assert_array_equal(packer.unpack("S", tol), np.zeros(5))

    def test_build_tolerance_missing_group(self, packer):
        with pytest.raises(ConfigurationError, match="missing"):
            packer.build_tolerance({"Theta": 1e-3, "M": 1e-3})

    def test_build_tolerance_unknown_group(self, packer):
        with pytest.raises(ConfigurationError, match="unknown"):
            packer.build_tolerance({"Theta": 0, "M": 0, "S": 0, "B": 0})

    def test_build_tolerance_rejects_sequence(self, packer):
        with pytest.raises(ConfigurationError, match="unsupported xtol_abs"):
            packer.build_tolerance([1e-6] * packer.size)
