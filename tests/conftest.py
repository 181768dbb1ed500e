import pytest

from ivrflow.ir import Graph


@pytest.fixture
def menu_graph() -> Graph:
    """Welcome prompt -> key menu; 1 transfers, 2 hangs up."""
    g = Graph()
    g.add_node("prompt", {"message": "Welcome to Acme."}, node_id="P1")
    g.add_node("key", {"options": {"1": "TransferNode", "2": "HangupNode"}}, node_id="K1")
    g.add_node("transfer", {"destination": "SIP/sales"}, node_id="Transfer", name="TransferNode")
    g.add_node("hangup", node_id="Hangup", name="HangupNode")
    g.connect("P1", "K1")
    g.connect("K1", "Transfer", "1")
    g.connect("K1", "Hangup", "2")
    return g


@pytest.fixture
def looping_graph() -> Graph:
    """K1 --1--> K2 --1--> K1, entered from a prompt; K1 option 2 hangs up."""
    g = Graph()
    g.add_node("prompt", {"message": "Hello"}, node_id="P")
    g.add_node("key", {"options": {"1": "More", "2": "Bye"}}, node_id="K1")
    g.add_node("key", {"options": {"1": "Back"}}, node_id="K2")
    g.add_node("hangup", node_id="H")
    g.connect("P", "K1")
    g.connect("K1", "K2", "1")
    g.connect("K1", "H", "2")
    g.connect("K2", "K1", "1")
    return g
