import asyncio
from uuid import uuid4

import pytest

from familysafe.errors import ApiError, ErrorKind
from familysafe.routes.children import list_children, rename_child, unlink_child
from familysafe.schemas import RenameChildRequest


def test_list_children_uses_caller_id_and_maps_locations(make_auth, parent_id):
    child_id = str(uuid4())
    auth = make_auth(
        rpc_results={
            "get_children_latest_locations": [
                {
                    "id": child_id,
                    "full_name": "Kid",
                    "avatar_url": None,
                    "latitude": 52.52,
                    "longitude": 13.405,
                    "recorded_at": "2025-01-01T10:00:00Z",
                    "battery_level": 80,
                },
                {"id": str(uuid4()), "full_name": None, "latitude": None, "longitude": None},
            ]
        }
    )

    children = asyncio.run(list_children(auth=auth))

    assert [child.id for child in children][0] == child_id
    assert children[0].latitude == 52.52
    assert children[1].recorded_at is None
    assert auth.supabase.calls == [
        ("rpc", "get_children_latest_locations", {"p_parent_id": parent_id})
    ]


def test_list_children_handles_empty_rpc_result(make_auth):
    auth = make_auth()
    assert asyncio.run(list_children(auth=auth)) == []


def test_rename_child_trims_and_requires_link(make_auth, parent_id):
    child_id = str(uuid4())
    auth = make_auth(
        select_queue={"parent_child_relations": [[{"child_id": child_id}]]},
        update_queue={
            "profiles": [[{"id": child_id, "full_name": "Sam", "avatar_url": None, "user_role": "child"}]]
        },
    )

    profile = asyncio.run(
        rename_child(child_id, RenameChildRequest(fullName="  Sam  "), auth=auth)
    )

    assert profile.full_name == "Sam"
    select_call, update_call = auth.supabase.calls
    assert select_call[2]["parent_id"] == f"eq.{parent_id}"
    assert select_call[2]["child_id"] == f"eq.{child_id}"
    assert update_call[1:] == ("profiles", {"full_name": "Sam"}, {"id": f"eq.{child_id}"})


def test_rename_unlinked_child_is_not_found(make_auth):
    auth = make_auth()

    with pytest.raises(ApiError) as exc:
        asyncio.run(rename_child(str(uuid4()), RenameChildRequest(fullName="Sam"), auth=auth))

    assert exc.value.kind == ErrorKind.NOT_FOUND
    assert not [call for call in auth.supabase.calls if call[0] == "update"]


def test_rename_to_blank_is_invalid(make_auth):
    auth = make_auth()

    with pytest.raises(ApiError) as exc:
        asyncio.run(rename_child(str(uuid4()), RenameChildRequest(fullName="   "), auth=auth))

    assert exc.value.status_code == 400
    assert auth.supabase.calls == []


def test_unlink_only_removes_callers_relation(make_auth, parent_id):
    child_id = str(uuid4())
    auth = make_auth(
        delete_queue={"parent_child_relations": [[{"parent_id": parent_id, "child_id": child_id}]]}
    )

    result = asyncio.run(unlink_child(child_id, auth=auth))

    assert result.child_id == child_id
    assert result.status == "unlinked"
    assert auth.supabase.calls == [
        (
            "delete",
            "parent_child_relations",
            {"parent_id": f"eq.{parent_id}", "child_id": f"eq.{child_id}"},
        )
    ]


def test_unlink_missing_relation_is_not_found(make_auth):
    auth = make_auth()

    with pytest.raises(ApiError) as exc:
        asyncio.run(unlink_child(str(uuid4()), auth=auth))

    assert exc.value.kind == ErrorKind.NOT_FOUND


def test_invalid_child_id_is_rejected(make_auth):
    auth = make_auth()

    with pytest.raises(ApiError) as exc:
        asyncio.run(unlink_child("not-a-uuid", auth=auth))

    assert exc.value.kind == ErrorKind.INVALID_ARGUMENT
    assert auth.supabase.calls == []
