from ivrflow.ir import Edge, Graph
from ivrflow.serializer import deserialize
from ivrflow.validator import FindingCode, Severity, validate


def codes(findings):
    return [f.code for f in findings]


def test_menu_flow_is_clean(menu_graph):
    report = validate(menu_graph)
    assert report.errors == []
    assert report.warnings == []
    assert report.compilable
    assert report.start == "P1"
    assert all(m.startswith("OK:") for m in report.messages())


def test_missing_option_edge_is_a_dead_branch(menu_graph):
    menu_graph.remove_node("Hangup")
    report = validate(menu_graph)
    assert report.errors == []
    assert len(report.warnings) == 1
    dead = report.warnings[0]
    assert dead.code == FindingCode.DEAD_BRANCH
    assert (dead.node_id, dead.handle) == ("K1", "2")
    assert report.compilable


def test_orphaned_branch_target_is_also_unreachable(menu_graph):
    menu_graph.disconnect("e-K1-2-Hangup")
    report = validate(menu_graph)
    assert report.errors == []
    assert codes(report.warnings) == [FindingCode.UNREACHABLE_NODE, FindingCode.DEAD_BRANCH]
    assert report.warnings[0].node_id == "Hangup"


def test_edge_out_of_hangup_is_illegal(menu_graph):
    menu_graph.add_node("prompt", {"message": "never"}, node_id="P2")
    menu_graph.connect("Hangup", "P2")
    report = validate(menu_graph)
    assert codes(report.errors) == [FindingCode.ILLEGAL_OUTGOING_EDGE]
    assert report.errors[0].node_id == "Hangup"
    assert not report.compilable


def test_two_isolated_nodes_have_no_start():
    g = Graph()
    g.add_node("prompt", {"message": "a"})
    g.add_node("hangup")
    report = validate(g)
    assert FindingCode.AMBIGUOUS_START in codes(report.errors)
    assert report.start is None


def test_two_entry_chains_are_ambiguous():
    g = Graph()
    for n in ("a", "b"):
        g.add_node("prompt", {"message": n}, node_id=f"p{n}")
        g.add_node("hangup", node_id=f"h{n}")
        g.connect(f"p{n}", f"h{n}")
    report = validate(g)
    assert codes(report.errors) == [FindingCode.AMBIGUOUS_START]
    assert "pa, pb" in report.errors[0].message

    g.mark_start("pa")
    report = validate(g)
    assert report.errors == []
    assert codes(report.warnings) == [FindingCode.UNREACHABLE_NODE, FindingCode.UNREACHABLE_NODE]


def test_cycle_is_a_warning(looping_graph):
    report = validate(looping_graph)
    assert report.errors == []
    assert codes(report.warnings) == [FindingCode.CYCLE_DETECTED]
    assert report.warnings[0].nodes == ("K1", "K2")


def test_branching_self_loop_is_allowed_and_not_a_cycle(menu_graph):
    menu_graph.update_node_config("K1", {"options": {"1": "T", "2": "H", "9": "Repeat"}})
    menu_graph.connect("K1", "K1", "9")
    report = validate(menu_graph)
    assert report.errors == []
    assert report.warnings == []


def test_self_loop_on_prompt_is_an_error():
    g = Graph()
    g.add_node("prompt", {"message": "again"}, node_id="p")
    g.connect("p", "p")
    report = validate(g)
    assert FindingCode.ILLEGAL_SELF_LOOP in codes(report.errors)


def test_incomplete_config_is_reported_per_field():
    g = Graph()
    g.add_node("prompt", node_id="p")
    g.add_node("api", node_id="a")
    g.add_node("queue", node_id="q")
    g.connect("p", "a")
    g.connect("a", "q")
    report = validate(g)
    incomplete = report.by_code(FindingCode.INCOMPLETE_CONFIG)
    assert [(f.node_id, f.field) for f in incomplete] == [
        ("p", "message or audioUrl"),
        ("a", "apiMock or endpoint"),
        ("q", "summary or destination"),
    ]
    assert all(f.severity == Severity.ERROR for f in incomplete)


def test_empty_options_are_incomplete():
    g = Graph()
    g.add_node("language", node_id="l")
    report = validate(g)
    assert [(f.node_id, f.field) for f in report.errors] == [("l", "options")]


def test_dangling_and_duplicate_edges_from_a_loaded_document(menu_graph):
    edges = menu_graph.edges + (
        Edge(id="dangling", source="K1", target="ghost", source_handle="3"),
        Edge(id="dup", source="K1", target="P1", source_handle="1"),
    )
    g = Graph(menu_graph.nodes, edges)
    report = validate(g)
    assert codes(report.errors)[:2] == [FindingCode.DANGLING_EDGE, FindingCode.DUPLICATE_BRANCH]
    assert report.errors[0].edge_id == "dangling"
    assert report.errors[1].edge_id == "dup"


def test_handles_must_match_block_type(menu_graph):
    edges = [e for e in menu_graph.edges if e.id != "e-P1-K1"]
    edges += [
        Edge(id="handled-prompt", source="P1", target="K1", source_handle="1"),
        Edge(id="undeclared", source="K1", target="P1", source_handle="7"),
    ]
    report = validate(Graph(menu_graph.nodes, edges))
    invalid = report.by_code(FindingCode.INVALID_HANDLE)
    assert sorted(f.edge_id for f in invalid) == ["handled-prompt", "undeclared"]


def test_api_may_branch_on_response_codes():
    g = Graph()
    g.add_node("api", {"apiMock": "200"}, node_id="api")
    g.add_node("hangup", node_id="ok")
    g.add_node("voicemail", {"destination": "100"}, node_id="fail")
    g.connect("api", "ok", "200")
    g.connect("api", "fail", "500")
    assert validate(g).errors == []

    g.disconnect("e-api-500-fail")
    g.connect("api", "fail")
    assert codes(validate(g).errors) == [FindingCode.INVALID_HANDLE]


def test_unknown_block_is_only_a_warning():
    g = deserialize({
        "nodes": [
            {"id": "p", "blockType": "prompt", "name": "p", "config": {"message": "hi"}},
            {"id": "x", "blockType": "sms", "name": "x", "config": {"to": "+1555"}},
        ],
        "edges": [{"id": "e", "source": "p", "target": "x"}],
    })
    report = validate(g)
    assert report.errors == []
    assert codes(report.warnings) == [FindingCode.UNKNOWN_BLOCK_TYPE]


def test_validation_is_idempotent(looping_graph):
    first = validate(looping_graph)
    second = validate(looping_graph)
    assert first == second
    assert first.messages() == second.messages()


def test_empty_graph_has_no_start():
    report = validate(Graph())
    assert codes(report.errors) == [FindingCode.AMBIGUOUS_START]


def test_bare_cycle_starts_at_first_node():
    g = Graph()
    g.add_node("key", {"options": {"1": "Next"}}, node_id="K1")
    g.add_node("key", {"options": {"1": "Back"}}, node_id="K2")
    g.connect("K1", "K2", "1")
    g.connect("K2", "K1", "1")
    report = validate(g)
    assert report.errors == []
    assert report.start == "K1"
    assert codes(report.warnings) == [FindingCode.CYCLE_DETECTED]
    assert report.warnings[0].nodes == ("K1", "K2")
