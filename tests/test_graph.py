import pytest

from needle.graph import CycleDetectedError, Graph, Node, ParallelGroup


def test_add_node():
    g = Graph()
    g.add_node("A", ["B", "C"])
    assert g.has_node("A")
    assert g.get_dependencies("A") == ["B", "C"]


def test_remove_node():
    g = Graph()
    g.add_node("A", None)
    g.add_node("B", None)
    g.remove_node("A")
    assert not g.has_node("A")
    assert g.has_node("B")


def test_get_node_returns_copy():
    g = Graph()
    g.add_node("A", ["B"])
    node = g.get_node("A")
    assert node == Node("A", ["B"])
    node.dependencies.append("X")
    assert g.get_dependencies("A") == ["B"]
    assert g.get_node("missing") is None


def test_get_dependents():
    g = Graph()
    g.add_node("A", ["C"])
    g.add_node("B", ["C"])
    g.add_node("C", None)
    assert sorted(g.get_dependents("C")) == ["A", "B"]


def test_validate():
    g = Graph()
    g.add_node("A", ["B", "C"])
    g.add_node("B", None)
    assert g.validate() == ["C"]


def test_clone():
    g = Graph()
    g.add_node("A", ["B"])
    g.add_node("B", None)
    clone = g.clone()
    assert len(clone) == len(g)
    g.add_node("C", None)
    assert len(clone) != len(g)
    assert len(clone) == 2


def test_clear():
    g = Graph()
    g.add_node("A", None)
    g.clear()
    assert len(g) == 0
    assert g.nodes() == []


def test_detect_cycles_no_cycle():
    g = Graph()
    g.add_node("A", ["B"])
    g.add_node("B", ["C"])
    g.add_node("C", None)
    assert g.detect_cycles() == []


def test_detect_cycles_simple_cycle():
    g = Graph()
    g.add_node("A", ["B"])
    g.add_node("B", ["A"])
    cycles = g.detect_cycles()
    assert len(cycles) == 1
    assert sorted(cycles[0]) == ["A", "B"]


def test_detect_cycles_self_cycle():
    g = Graph()
    g.add_node("A", ["A"])
    assert g.detect_cycles() == [["A"]]


def test_detect_cycles_complex_cycle():
    g = Graph()
    g.add_node("A", ["B"])
    g.add_node("B", ["C"])
    g.add_node("C", ["D"])
    g.add_node("D", ["B"])
    cycles = g.detect_cycles()
    assert len(cycles) >= 1
    assert sorted(cycles[0]) == ["B", "C", "D"]


def test_has_cycle():
    g = Graph()
    g.add_node("A", ["B"])
    g.add_node("B", None)
    assert g.has_cycle() is False
    g.add_node("B", ["A"])
    assert g.has_cycle() is True


def test_find_cycle_path():
    g = Graph()
    g.add_node("A", ["B"])
    g.add_node("B", ["C"])
    g.add_node("C", ["A"])
    path = g.find_cycle_path("A")
    assert path
    assert path[0] == path[-1]
    assert path == ["A", "B", "C", "A"]


def test_find_cycle_path_none_without_cycle():
    g = Graph()
    g.add_node("A", ["B"])
    g.add_node("B", None)
    assert g.find_cycle_path("A") is None


def test_get_all_cycle_paths():
    g = Graph()
    g.add_node("A", ["B"])
    g.add_node("B", ["A"])
    g.add_node("C", None)
    paths = g.get_all_cycle_paths()
    assert len(paths) == 1
    assert paths[0][0] == paths[0][-1]
    empty = Graph()
    empty.add_node("X", None)
    assert empty.get_all_cycle_paths() == []


def test_topological_sort():
    g = Graph()
    g.add_node("A", ["B", "C"])
    g.add_node("B", ["D"])
    g.add_node("C", ["D"])
    g.add_node("D", None)
    ordered = g.topological_sort()
    assert len(ordered) == 4
    assert ordered.index("D") < ordered.index("B")
    assert ordered.index("D") < ordered.index("C")
    assert ordered.index("B") < ordered.index("A")


def test_topological_sort_with_cycle():
    g = Graph()
    g.add_node("A", ["B"])
    g.add_node("B", ["A"])
    with pytest.raises(CycleDetectedError):
        g.topological_sort()


def test_topological_sort_cache_invalidated():
    g = Graph()
    g.add_node("A", None)
    assert g.topological_sort() == ["A"]
    g.add_node("B", ["A"])
    assert g.topological_sort() == ["A", "B"]


def test_startup_order():
    g = Graph()
    g.add_node("App", ["Server", "Database"])
    g.add_node("Server", ["Config"])
    g.add_node("Database", ["Config"])
    g.add_node("Config", None)
    order = g.startup_order()
    assert order.index("Config") < order.index("Server")
    assert order.index("Config") < order.index("Database")
    assert order.index("Server") < order.index("App")


def test_shutdown_order():
    g = Graph()
    g.add_node("App", ["Server"])
    g.add_node("Server", ["Database"])
    g.add_node("Database", None)
    order = g.shutdown_order()
    assert order.index("App") < order.index("Server")
    assert order.index("Server") < order.index("Database")
    assert order == list(reversed(g.startup_order()))


def test_resolution_order():
    g = Graph()
    g.add_node("A", ["B", "C"])
    g.add_node("B", ["D"])
    g.add_node("C", None)
    g.add_node("D", None)
    order = g.resolution_order("A")
    assert order[-1] == "A"
    assert {"B", "C", "D"} <= set(order)
    assert order.index("D") < order.index("B")


def test_resolution_order_unknown_target():
    g = Graph()
    assert g.resolution_order("X") == ["X"]


def test_resolution_order_cycle():
    g = Graph()
    g.add_node("A", ["B"])
    g.add_node("B", ["A"])
    with pytest.raises(CycleDetectedError):
        g.resolution_order("A")


def test_parallel_startup_groups():
    g = Graph()
    g.add_node("App", ["Server", "Worker"])
    g.add_node("Server", ["Database", "Cache"])
    g.add_node("Worker", ["Database"])
    g.add_node("Database", ["Config"])
    g.add_node("Cache", ["Config"])
    g.add_node("Config", None)
    groups = g.parallel_startup_groups()
    assert groups
    assert "Config" in groups[0].nodes
    assert [grp.level for grp in groups] == list(range(len(groups)))
    seen: set[str] = set()
    for grp in groups:
        for node in grp.nodes:
            assert set(g.get_dependencies(node)) <= seen
        seen.update(grp.nodes)
    assert seen == set(g.nodes())


def test_parallel_shutdown_groups():
    g = Graph()
    g.add_node("App", ["Server"])
    g.add_node("Server", ["Config"])
    g.add_node("Config", None)
    groups = g.parallel_shutdown_groups()
    assert groups == [
        ParallelGroup(0, ["App"]),
        ParallelGroup(1, ["Server"]),
        ParallelGroup(2, ["Config"]),
    ]