"""Tests for launch geometry and the kernel source catalogue."""

import pytest

from cudavec.kernels import COMPARE_KERNELS, UNARY_KERNELS, is_power_of_two, launch_geometry
from cudavec_cuda.kernel_sources import KERNEL_NAMES, VECTOR_KERNELS
from tests.conftest import HOST_KERNELS


class TestPowerOfTwo:
    @pytest.mark.parametrize("n", [1, 2, 4, 64, 1 << 20])
    def test_powers(self, n):
        assert is_power_of_two(n)

    @pytest.mark.parametrize("n", [0, -4, 3, 6, 100])
    def test_non_powers(self, n):
        assert not is_power_of_two(n)


class TestLaunchGeometry:
    def test_small_vector_single_block(self):
        assert launch_geometry(1, 128) == (1, 1)
        assert launch_geometry(100, 128) == (1, 100)

    def test_large_vector(self):
        assert launch_geometry(128, 128) == (1, 128)
        assert launch_geometry(256, 128) == (2, 128)
        assert launch_geometry(300, 128) == (3, 128)

    def test_covers_every_element(self):
        for n in range(1, 600, 7):
            grid, block = launch_geometry(n, 128)
            assert grid * block >= n
            assert (grid - 1) * block < n


class TestKernelCatalogue:
    def test_every_name_defined_in_source(self):
        for name in KERNEL_NAMES:
            assert f"__global__ void {name}(" in VECTOR_KERNELS

    def test_dispatch_names_exist(self):
        used = set(UNARY_KERNELS.values()) | set(COMPARE_KERNELS.values())
        assert used <= KERNEL_NAMES

    def test_host_double_covers_catalogue(self):
        assert set(HOST_KERNELS) == set(KERNEL_NAMES)
