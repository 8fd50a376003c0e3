import unittest

from ethnet.contracts.v1 import PORT_FAMILIES, PortBases
from ethnet.errors import ArgumentError
from ethnet.kernel.ports import allocate, check_disjoint, port_set, port_table


class TestPortAllocator(unittest.TestCase):
    def test_allocate_adds_index_to_base(self) -> None:
        bases = PortBases()
        self.assertEqual(allocate("geth_http", 0, bases), 8000)
        self.assertEqual(allocate("geth_http", 7, bases), 8007)
        self.assertEqual(allocate("beacon_grpc_gateway", 0, bases), 4100)

    def test_no_collisions_across_nodes_and_families(self) -> None:
        bases = PortBases()
        n = 50
        seen = set()
        for ps in port_table(n, bases):
            for port in ps.as_dict().values():
                self.assertNotIn(port, seen)
                seen.add(port)
        self.assertEqual(len(seen), n * len(PORT_FAMILIES))

    def test_port_set_has_thirteen_families(self) -> None:
        ps = port_set(3, PortBases())
        self.assertEqual(len(ps.as_dict()), 13)
        self.assertEqual(ps.index, 3)
        self.assertEqual(ps.validator_monitoring, 7203)

    def test_unknown_family(self) -> None:
        with self.assertRaises(KeyError):
            allocate("nope", 0, PortBases())

    def test_overlapping_bases_rejected_only_when_node_count_reaches_gap(self) -> None:
        bases = PortBases(geth_ws=8005)
        check_disjoint(bases, 5)
        with self.assertRaises(ArgumentError) as cm:
            check_disjoint(bases, 6)
        self.assertIn("geth_http/geth_ws", cm.exception.message)

    def test_fixed_port_inside_a_range_rejected(self) -> None:
        with self.assertRaises(ArgumentError):
            check_disjoint(PortBases(), 4, extra={"bootnode": 8002})
        check_disjoint(PortBases(), 4, extra={"bootnode": 30301})


if __name__ == "__main__":
    unittest.main()
