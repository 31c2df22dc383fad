"""Admin floor, role changes, account deletion and profile updates."""

import unittest

from app.models import User
from app.repositories.users import LastAdminError, UserStore
from tests.support import AppHarness, InMemoryBlobStore, add_user, make_sessionmaker


class TestAdminFloorStore(unittest.TestCase):
    """UserStore refuses writes that would leave zero admins."""

    def setUp(self) -> None:
        self.db = make_sessionmaker()()
        self.store = UserStore(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def test_deleting_sole_admin_raises(self) -> None:
        admin = add_user(self.db, "root", role="admin")
        with self.assertRaises(LastAdminError):
            self.store.delete(admin)
        self.assertEqual(self.store.count_by_role("admin"), 1)

    def test_demoting_sole_admin_raises(self) -> None:
        admin = add_user(self.db, "root", role="admin")
        with self.assertRaises(LastAdminError) as ctx:
            self.store.change_role(admin, "user")
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(self.store.get(admin.id).role, "admin")

    def test_demoting_one_of_two_admins_succeeds(self) -> None:
        first = add_user(self.db, "root", role="admin")
        add_user(self.db, "root2", role="admin")
        self.store.change_role(first, "user")
        self.assertEqual(self.store.count_by_role("admin"), 1)

    def test_deleting_regular_user_with_single_admin_succeeds(self) -> None:
        add_user(self.db, "root", role="admin")
        member = add_user(self.db, "member")
        self.store.delete(member)
        self.assertIsNone(self.store.get(member.id))

    def test_lookups_are_case_insensitive(self) -> None:
        member = add_user(self.db, "member", email="member@example.com")
        self.assertEqual(self.store.find_by_email("Member@Example.COM").id, member.id)
        self.assertEqual(self.store.find_by_username(" MEMBER ").id, member.id)


class AdminApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.blobs = InMemoryBlobStore()
        self.h = AppHarness(blob_store=self.blobs)
        self.client = self.h.client
        self.admin_id = self.h.register("root").json()["id"]
        self.member_id = self.h.register("member").json()["id"]
        self.admin_headers = self.h.auth_headers("root")

    def tearDown(self) -> None:
        self.h.close()


class TestRegistrationRoles(AdminApiTestCase):
    def test_first_user_is_admin_then_users(self) -> None:
        with self.h.db() as db:
            self.assertEqual(db.get(User, self.admin_id).role, "admin")
            self.assertEqual(db.get(User, self.member_id).role, "user")

    def test_duplicate_username_or_email_is_409(self) -> None:
        self.assertEqual(self.h.register("member", email="other@example.com").status_code, 409)
        self.assertEqual(self.h.register("other", email="MEMBER@example.com").status_code, 409)

    def test_invalid_username_is_400(self) -> None:
        self.assertEqual(self.h.register("no spaces allowed").status_code, 400)

    def test_short_password_is_400(self) -> None:
        resp = self.client.post(
            "/api/v1/auth/register",
            data={"email": "x@example.com", "username": "shorty", "password": "short"},
        )
        self.assertEqual(resp.status_code, 400)


class TestAdminEndpoints(AdminApiTestCase):
    def test_list_users_requires_admin(self) -> None:
        member_headers = self.h.auth_headers("member")
        self.assertEqual(self.client.get("/api/v1/users", headers=member_headers).status_code, 403)
        resp = self.client.get("/api/v1/users", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual({u["username"] for u in resp.json()["users"]}, {"root", "member"})

    def test_promote_then_demote(self) -> None:
        resp = self.client.patch(
            f"/api/v1/users/{self.member_id}/role", json={"role": "admin"}, headers=self.admin_headers
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["role"], "admin")
        resp = self.client.patch(
            f"/api/v1/users/{self.admin_id}/role", json={"role": "user"}, headers=self.admin_headers
        )
        self.assertEqual(resp.status_code, 200)

    def test_demoting_sole_admin_is_400(self) -> None:
        resp = self.client.patch(
            f"/api/v1/users/{self.admin_id}/role", json={"role": "user"}, headers=self.admin_headers
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], "At least one admin is required")

    def test_unknown_role_is_400(self) -> None:
        resp = self.client.patch(
            f"/api/v1/users/{self.member_id}/role", json={"role": "owner"}, headers=self.admin_headers
        )
        self.assertEqual(resp.status_code, 400)

    def test_unknown_user_is_404(self) -> None:
        resp = self.client.delete("/api/v1/users/does-not-exist", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 404)

    def test_admin_cannot_delete_self(self) -> None:
        resp = self.client.delete(f"/api/v1/users/{self.admin_id}", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 400)

    def test_delete_returns_snapshot_and_removes_avatar(self) -> None:
        with self.h.db() as db:
            user = db.get(User, self.member_id)
            user.avatar_url = f"{self.blobs.base_url}/avatars/{self.member_id}-1"
            db.commit()
        resp = self.client.delete(f"/api/v1/users/{self.member_id}", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["message"], "User deleted")
        self.assertEqual(body["user"]["username"], "member")
        self.assertEqual(self.blobs.deleted, [f"{self.blobs.base_url}/avatars/{self.member_id}-1"])
        with self.h.db() as db:
            self.assertIsNone(db.get(User, self.member_id))

    def test_delete_survives_blob_failure(self) -> None:
        self.blobs.fail_delete = True
        with self.h.db() as db:
            db.get(User, self.member_id).avatar_url = f"{self.blobs.base_url}/avatars/x"
            db.commit()
        resp = self.client.delete(f"/api/v1/users/{self.member_id}", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 200)
        with self.h.db() as db:
            self.assertIsNone(db.get(User, self.member_id))


class TestProfileUpdate(AdminApiTestCase):
    def test_updates_names(self) -> None:
        headers = self.h.auth_headers("member")
        resp = self.client.patch(
            "/api/v1/users/me", json={"first_name": "  Ann ", "last_name": "Lee"}, headers=headers
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["first_name"], "Ann")
        self.assertEqual(resp.json()["last_name"], "Lee")

    def test_empty_update_is_400(self) -> None:
        headers = self.h.auth_headers("member")
        resp = self.client.patch("/api/v1/users/me", json={}, headers=headers)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], "No updates provided")
