"""Trade action reconciler tests."""


def _position(id, asset="BTC", side="LONG", ts="2025-01-01T00:00:00+00:00"):
    from agentloop.shell.contract import Trade
    return Trade(id=id, agent_id="a1", asset=asset, side=side, size=100.0, quantity=0.001,
                 entry_price=100000.0, entry_timestamp=ts)


def _action(kind, asset="BTC", **kw):
    from agentloop.shell.contract import ActionType, LLMTradeAction
    return LLMTradeAction(action=ActionType(kind), asset=asset, **kw)


def test_opens_pass_through_in_order():
    from agentloop.shell.contract import OrderKind
    from agentloop.trading.reconciler import reconcile

    decisions = reconcile([_action("OPEN_LONG"), _action("OPEN_SHORT", "ETH")], [])
    assert [d.kind for d in decisions] == [OrderKind.OPEN, OrderKind.OPEN]
    assert [d.asset for d in decisions] == ["BTC", "ETH"]


def test_duplicate_open_not_blocked():
    from agentloop.trading.reconciler import reconcile
    decisions = reconcile([_action("OPEN_LONG")], [_position("p1")])
    assert len(decisions) == 1
    assert decisions[0].position is None


def test_no_action_dropped():
    from agentloop.trading.reconciler import reconcile
    assert reconcile([_action("NO_ACTION", asset=None)], [_position("p1")]) == []


def test_close_without_position_dropped():
    from agentloop.trading.reconciler import reconcile
    assert reconcile([_action("CLOSE_LONG", "ETH")], [_position("p1")]) == []


def test_close_matches_side_then_oldest():
    from agentloop.trading.reconciler import reconcile
    positions = [
        _position("new-long", ts="2025-01-03T00:00:00+00:00"),
        _position("short", side="SHORT", ts="2025-01-01T00:00:00+00:00"),
        _position("old-long", ts="2025-01-02T00:00:00+00:00"),
    ]
    [decision] = reconcile([_action("CLOSE_LONG")], positions)
    assert decision.position.id == "old-long"

    [decision] = reconcile([_action("CLOSE_SHORT")], positions)
    assert decision.position.id == "short"


def test_close_falls_back_to_any_side():
    from agentloop.trading.reconciler import reconcile
    [decision] = reconcile([_action("CLOSE_LONG", "btc-perp")], [_position("s", side="SHORT")])
    assert decision.position.id == "s"


def test_explicit_position_id_wins():
    from agentloop.trading.reconciler import reconcile
    positions = [_position("a", ts="2025-01-01"), _position("b", ts="2025-01-02")]
    [decision] = reconcile([_action("CLOSE_LONG", position_id="b")], positions)
    assert decision.position.id == "b"


def test_position_closed_at_most_once():
    from agentloop.trading.reconciler import reconcile
    decisions = reconcile([_action("CLOSE_LONG"), _action("CLOSE_LONG")], [_position("only")])
    assert len(decisions) == 1
