import asyncio

import pytest

from db import (
    CODE_LENGTH,
    CoupleError,
    add_couple,
    create_group,
    delete_group,
    find_member_by_username,
    get_assignments,
    get_couples,
    get_group,
    get_group_by_code,
    get_group_member_ids,
    get_group_members,
    get_receiver_for_giver,
    get_user_label,
    is_group_admin,
    is_group_member,
    join_group,
    leave_group,
    list_user_groups,
    remove_couple,
    replace_assignments,
)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def group(db_path, users):
    group_id, code = run(create_group(db_path, "Офис", users[0], budget=1500))
    for uid in users[1:]:
        run(join_group(db_path, group_id, uid))
    return group_id, code


def test_create_group_makes_creator_admin(db_path, users):
    group_id, code = run(create_group(db_path, "Семья", users[0], budget=500, description="НГ"))

    assert len(code) == CODE_LENGTH
    assert code == code.upper()
    row = run(get_group(db_path, group_id))
    assert row[1:6] == ("Семья", "НГ", 500, code, users[0])
    assert row[6] == 0
    assert run(is_group_admin(db_path, group_id, users[0]))
    assert run(get_group_member_ids(db_path, group_id)) == [users[0]]


def test_group_codes_are_unique(db_path, users):
    codes = {run(create_group(db_path, f"g{i}", users[0]))[1] for i in range(20)}
    assert len(codes) == 20


def test_get_group_by_code_ignores_case(db_path, group):
    group_id, code = group
    assert run(get_group_by_code(db_path, f" {code.lower()} "))[0] == group_id
    assert run(get_group_by_code(db_path, "NOPE00")) is None


def test_join_twice(db_path, group, users):
    group_id, _ = group
    assert not run(join_group(db_path, group_id, users[1]))
    assert not run(is_group_admin(db_path, group_id, users[1]))
    assert sorted(run(get_group_member_ids(db_path, group_id))) == users


def test_members_and_lookup(db_path, group, users):
    group_id, _ = group
    members = run(get_group_members(db_path, group_id))
    assert [m[0] for m in members] == users
    assert members[0][3] == "admin"
    assert run(find_member_by_username(db_path, group_id, "@Bob")) == 2
    assert run(find_member_by_username(db_path, group_id, "mallory")) is None
    assert run(get_user_label(db_path, 2)) == "Bob (@bob)"
    assert run(get_user_label(db_path, 999)) == "999"


def test_list_user_groups(db_path, group, users):
    group_id, code = group
    assert run(list_user_groups(db_path, users[0])) == [(group_id, "Офис", code, "admin")]
    assert run(list_user_groups(db_path, users[1])) == [(group_id, "Офис", code, "member")]


def test_couples(db_path, group):
    group_id, _ = group
    run(add_couple(db_path, group_id, 2, 1))
    assert run(get_couples(db_path, group_id)) == [(1, 2)]

    with pytest.raises(CoupleError):
        run(add_couple(db_path, group_id, 1, 3))
    with pytest.raises(CoupleError):
        run(add_couple(db_path, group_id, 3, 3))
    with pytest.raises(CoupleError):
        run(add_couple(db_path, group_id, 3, 42))

    assert run(remove_couple(db_path, group_id, 1, 2))
    assert not run(remove_couple(db_path, group_id, 1, 2))
    assert run(get_couples(db_path, group_id)) == []


def test_replace_assignments_overwrites(db_path, group):
    group_id, _ = group
    run(replace_assignments(db_path, group_id, [(1, 2), (2, 3), (3, 4), (4, 1)]))
    run(replace_assignments(db_path, group_id, [(1, 3), (3, 1), (2, 4), (4, 2)]))

    assert run(get_assignments(db_path, group_id)) == [(1, 3), (2, 4), (3, 1), (4, 2)]
    assert run(get_receiver_for_giver(db_path, group_id, 2)) == 4
    assert run(get_group(db_path, group_id))[6] == 1


def test_leave_drops_assignments_and_couple(db_path, group):
    group_id, _ = group
    run(add_couple(db_path, group_id, 3, 4))
    run(replace_assignments(db_path, group_id, [(1, 2), (2, 3), (3, 4), (4, 1)]))

    run(leave_group(db_path, group_id, 4))

    assert run(get_group_member_ids(db_path, group_id)) == [1, 2, 3]
    assert run(get_couples(db_path, group_id)) == []
    assert run(get_assignments(db_path, group_id)) == []
    assert run(get_receiver_for_giver(db_path, group_id, 1)) is None
    assert run(get_group(db_path, group_id))[6] == 0


def test_delete_group(db_path, group):
    group_id, code = group
    run(add_couple(db_path, group_id, 1, 2))
    run(replace_assignments(db_path, group_id, [(1, 3), (3, 1), (2, 4), (4, 2)]))

    run(delete_group(db_path, group_id))

    assert run(get_group(db_path, group_id)) is None
    assert run(get_group_by_code(db_path, code)) is None
    assert run(get_group_member_ids(db_path, group_id)) == []
    assert run(get_couples(db_path, group_id)) == []
    assert run(get_assignments(db_path, group_id)) == []


def test_leave_by_stranger_changes_nothing(db_path, group, users):
    group_id, _ = group
    cycle = [(1, 2), (2, 3), (3, 4), (4, 1)]
    run(replace_assignments(db_path, group_id, cycle))

    assert not run(leave_group(db_path, group_id, 999))

    assert run(get_group_member_ids(db_path, group_id)) == users
    assert run(get_assignments(db_path, group_id)) == cycle
    assert run(get_group(db_path, group_id))[6] == 1


def test_leave_returns_true_for_member(db_path, group):
    group_id, _ = group
    assert run(leave_group(db_path, group_id, 3))
    assert not run(leave_group(db_path, group_id, 3))
    assert not run(is_group_member(db_path, group_id, 3))


def test_last_admin_leaving_hands_over_role(db_path, group):
    group_id, _ = group
    assert run(is_group_admin(db_path, group_id, 1))

    run(leave_group(db_path, group_id, 1))

    assert run(is_group_admin(db_path, group_id, 2))
    assert not run(is_group_admin(db_path, group_id, 3))


def test_member_leaving_keeps_admin(db_path, group):
    group_id, _ = group
    run(leave_group(db_path, group_id, 2))

    members = run(get_group_members(db_path, group_id))
    assert [(m[0], m[3]) for m in members] == [(1, "admin"), (3, "member"), (4, "member")]


def test_new_couple_resets_stale_draw(db_path, group):
    group_id, _ = group
    run(replace_assignments(db_path, group_id, [(1, 2), (2, 3), (3, 4), (4, 1)]))

    assert run(add_couple(db_path, group_id, 1, 2))

    assert run(get_assignments(db_path, group_id)) == []
    assert run(get_group(db_path, group_id))[6] == 0


def test_couple_before_draw_reports_no_reset(db_path, group):
    group_id, _ = group
    assert not run(add_couple(db_path, group_id, 1, 2))


def test_is_group_member(db_path, group):
    group_id, _ = group
    assert run(is_group_member(db_path, group_id, 4))
    assert not run(is_group_member(db_path, group_id, 999))
