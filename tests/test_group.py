from gputelemetry.group import ConsumerGroup, GroupMember, compute_assignments


def ids(members):
    return [m.id for m in members]


def test_single_member_owns_everything():
    g = ConsumerGroup("topic", "grp", 10)
    member, assigned, evicted = g.join("collector-0")
    assert member.id == "collector-0"
    assert evicted == []
    assert assigned == list(range(10))


def test_second_member_join_triggers_rebalance():
    g = ConsumerGroup("topic", "grp", 10)
    first, _, _ = g.join("collector-0")
    _, assigned, evicted = g.join("collector-1")
    assert sorted(assigned) == [1, 3, 5, 7, 9]
    assert ids(evicted) == ["collector-0"]
    assert first.done.is_set()


def test_rejoin_after_rebalance_is_stable():
    g = ConsumerGroup("topic", "grp", 10)
    g.join("collector-0")
    c1, _, _ = g.join("collector-1")
    _, _, evicted = g.join("collector-0")
    assert "collector-1" not in ids(evicted)
    assert not c1.done.is_set()


def test_same_id_replaces_old_session():
    g = ConsumerGroup("topic", "grp", 4)
    first, _, _ = g.join("c0")
    second, _, evicted = g.join("c0")
    assert first is not second
    assert len(evicted) == 1 and evicted[0] is first
    assert first.done.is_set()


def test_leave_redistributes():
    g = ConsumerGroup("topic", "grp", 10)
    g.join("collector-0")
    g.join("collector-1")
    c0v2, _, _ = g.join("collector-0")
    evicted = g.leave("collector-1")
    assert ids(evicted) == ["collector-0"]
    assert c0v2.done.is_set()


def test_leave_unknown_member_is_noop():
    g = ConsumerGroup("topic", "grp", 4)
    assert g.leave("nobody") == []


def test_leave_if_same_member_when_replaced():
    g = ConsumerGroup("topic", "grp", 4)
    first, _, _ = g.join("c0")
    second, _, _ = g.join("c0")
    removed, evicted = g.leave_if_same_member("c0", first)
    assert removed is False
    assert evicted == []
    assert g.members["c0"] is second


def test_leave_if_same_member_when_still_present():
    g = ConsumerGroup("topic", "grp", 10)
    c0, _, _ = g.join("c0")
    c1, _, _ = g.join("c1")
    removed, evicted = g.leave_if_same_member("c0", c0)
    assert removed is True
    assert len(evicted) == 1 and evicted[0] is c1
    assert "c0" not in g.members


def test_leave_if_same_member_when_absent():
    g = ConsumerGroup("topic", "grp", 4)
    stub = GroupMember("ghost")
    assert g.leave_if_same_member("ghost", stub) == (False, [])


def test_different_member_id_does_not_evict_stale():
    g = ConsumerGroup("topic", "grp", 12)
    c0, _, _ = g.join("pod-old")
    g.join("pod-stable")
    assert "pod-old" in g.members
    g.join("pod-replacement")
    assert len(g.members) == 3
    removed, _ = g.leave_if_same_member("pod-old", c0)
    assert removed is True
    assert len(g.members) == 2


def test_acknowledge_monotonic():
    g = ConsumerGroup("topic", "grp", 4)
    g.acknowledge(0, 5)
    g.acknowledge(0, 3)
    g.acknowledge(0, 5)
    assert g.starting_offset(0) == 6
    g.acknowledge(0, 10)
    assert g.starting_offset(0) == 11


def test_starting_offset_for_uncommitted_partition():
    g = ConsumerGroup("topic", "grp", 4)
    assert g.starting_offset(2) == 0


def test_snapshot_committed_is_a_copy():
    g = ConsumerGroup("topic", "grp", 4)
    g.acknowledge(0, 100)
    g.acknowledge(1, 200)
    snap = g.snapshot_committed()
    assert snap == {0: 100, 1: 200}
    g.acknowledge(0, 999)
    assert snap[0] == 100
    assert g.snapshot_committed()[0] == 999


def test_compute_assignments_deterministic():
    a = {"a": GroupMember("a"), "b": GroupMember("b"), "c": GroupMember("c")}
    b = {"c": GroupMember("c"), "a": GroupMember("a"), "b": GroupMember("b")}
    out1 = compute_assignments(a, 6)
    out2 = compute_assignments(b, 6)
    assert len(out1) == 6
    assert out1 == out2
    assert out1 == {0: "a", 1: "b", 2: "c", 3: "a", 4: "b", 5: "c"}


def test_compute_assignments_empty():
    assert compute_assignments({}, 4) == {}
    assert compute_assignments({"a": GroupMember("a")}, 0) == {}