import pytest

from errors import NotFound
from notifications import StoreNotifier
from schemas import CreateAccessRequest, UpdateUser
from users import AccessRequestRepository, UserRepository

from .conftest import make_user


@pytest.fixture
def users(store):
    return UserRepository(store)


@pytest.fixture
def access_requests(store):
    return AccessRequestRepository(store)


def test_user_queries(users, store):
    alice = make_user(store, "alice@warehouse.io", "admin", name="Alice")
    make_user(store, "bob@warehouse.io", "supplier", name="Bob")
    make_user(store, "carol@warehouse.io", "supplier", name="Carol")

    assert [u.name for u in users.get_all()] == ["Alice", "Bob", "Carol"]
    assert users.get_by_email("alice@warehouse.io").id == alice
    assert users.get_by_email("nobody@warehouse.io") is None
    assert [u.name for u in users.get_by_role("supplier")] == ["Bob", "Carol"]
    assert [u.name for u in users.search("CAR")] == ["Carol"]

    stats = users.get_stats()
    assert stats["total"] == 3
    assert stats["supplier"] == 2
    assert stats["warehouse_staff"] == 0


def test_user_updates(users, store):
    uid = make_user(store, "dave@warehouse.io", "internal_user", name="Dave")

    users.update(UpdateUser(id=uid, department="Receiving"))
    users.update_role(uid, "warehouse_staff")
    users.update_status(uid, "rejected")

    user = users.get_by_id(uid)
    assert user.department == "Receiving"
    assert user.name == "Dave"
    assert user.role == "warehouse_staff"
    assert user.status == "rejected"
    assert user.updatedAt is not None

    assert users.delete(uid) is True
    with pytest.raises(NotFound):
        users.update_role(uid, "admin")


def test_access_request_review(access_requests):
    rid = access_requests.create(CreateAccessRequest(name="Eve", email="eve@warehouse.io",
                                                     requestedRole="warehouse_staff"))
    assert [r.id for r in access_requests.get_pending()] == [rid]
    assert access_requests.find_approved("eve@warehouse.io") is None

    access_requests.approve(rid, "admin-1")

    approved = access_requests.find_approved("eve@warehouse.io")
    assert approved.id == rid
    assert approved.reviewedBy == "admin-1"
    assert access_requests.get_pending() == []

    with pytest.raises(NotFound):
        access_requests.reject(rid, "admin-1", "too late")


def test_notifications_inbox(notifications):
    first = notifications.create("u1", "Hello", "First")
    notifications.create("u1", "Again", "Second", type="warning")
    notifications.create("u2", "Other", "Not yours")

    notifications.mark_read(first)
    inbox = notifications.get_for_user("u1")
    assert [n.title for n in inbox] == ["Again", "Hello"]
    assert [n.title for n in notifications.get_for_user("u1", unread_only=True)] == ["Again"]

    assert notifications.mark_all_read("u1") == 1
    assert notifications.get_for_user("u1", unread_only=True) == []


def test_notification_subscription_and_store_notifier(notifications):
    received = []
    unsubscribe = notifications.subscribe_for_user("u1", received.append)

    notifier = StoreNotifier(notifications, "u1")
    notifier.notify_success("Saved")
    notifier.notify_error("Broken")

    assert [n.type for n in received[-1]] == ["error", "success"]
    unsubscribe()
