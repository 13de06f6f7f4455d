"""Tests for favorites, personal folders and global folders."""

import pytest

from concept_tracker import config as cfg
from concept_tracker.errors import ACCESS_DENIED
from concept_tracker.favorites import FavoritesManager
from concept_tracker.models import MutationStatus

from conftest import backend_down, permission_denied


@pytest.fixture()
def demo_ids(fake):
    return [fake.seed_demo(title) for title in ("Alpha", "Beta", "Gamma")]


@pytest.fixture()
def manager(fake, gateway, users):
    fake.login_as(users["user"])
    manager = FavoritesManager(gateway, users["user"])
    manager.load()
    return manager


def folder_titles(folder):
    return sorted(d.title for d in folder.demos)


class TestLoad:

    def test_unorganized_comes_first(self, fake, gateway, users, demo_ids):
        clients = fake.seed_folder("Clients", users["user"])
        fake.seed_favorite(users["user"], demo_ids[0])
        fake.seed_favorite(users["user"], demo_ids[1], clients)
        fake.login_as(users["user"])

        manager = FavoritesManager(gateway, users["user"])
        ok, error = manager.load()

        assert ok and error is None
        assert [f.name for f in manager.folders] == ["Unorganized", "Clients"]
        assert folder_titles(manager.folders[0]) == ["Alpha"]
        assert folder_titles(manager.folders[1]) == ["Beta"]
        assert sorted(d.title for d in manager.favorites) == ["Alpha", "Beta"]

    def test_other_users_personal_folders_are_hidden(self, fake, gateway, users, demo_ids):
        fake.seed_folder("Private", users["other"])
        fake.seed_favorite(users["other"], demo_ids[0])

        manager = FavoritesManager(gateway, users["user"])
        manager.load()

        assert [f.name for f in manager.folders] == ["Unorganized"]
        assert manager.favorites == []

    def test_failed_reload_keeps_last_known_state(self, fake, users, demo_ids, manager):
        manager.toggle_favorite(demo_ids[0], manager.gateway.get_demo(demo_ids[0]))
        manager.create_folder("Clients")

        fake.fail((cfg.FOLDERS_TABLE, "select"), backend_down())
        ok, error = manager.refetch()

        assert not ok
        assert error.startswith("Failed to load favorites")
        assert manager.error == error
        assert manager.is_favorited(demo_ids[0])
        assert [f.name for f in manager.folders] == ["Unorganized", "Clients"]

    def test_link_to_missing_folder_shows_as_unorganized(self, fake, gateway, users, demo_ids):
        fake.seed_favorite(users["user"], demo_ids[0], folder_id="gone")

        manager = FavoritesManager(gateway, users["user"])
        manager.load()

        assert folder_titles(manager.folders[0]) == ["Alpha"]


class TestToggle:

    def test_toggle_round_trip(self, fake, users, demo_ids, manager):
        demo = manager.gateway.get_demo(demo_ids[1])

        now_favorited, error = manager.toggle_favorite(demo.id, demo)
        assert now_favorited is True and error is None
        assert manager.is_favorited(demo.id)
        assert [d.title for d in manager.favorites] == ["Beta"]
        assert [d.title for d in manager.unorganized] == ["Beta"]
        assert fake.row(cfg.FAVORITES_TABLE, user_id=users["user"], demo_id=demo.id)

        now_favorited, error = manager.toggle_favorite(demo.id, demo)
        assert now_favorited is False and error is None
        assert not manager.is_favorited(demo.id)
        assert manager.favorites == []
        assert manager.unorganized == []
        assert fake.tables[cfg.FAVORITES_TABLE] == []

    def test_refavorite_without_demo_reuses_loaded_row(self, fake, gateway, users, demo_ids):
        fake.seed_favorite(users["user"], demo_ids[0])
        fake.login_as(users["user"])
        manager = FavoritesManager(gateway, users["user"])
        manager.load()

        assert manager.toggle_favorite(demo_ids[0]) == (False, None)
        assert manager.favorites == []

        assert manager.toggle_favorite(demo_ids[0]) == (True, None)
        assert [d.title for d in manager.favorites] == ["Alpha"]
        assert [d.title for d in manager.unorganized] == ["Alpha"]

    def test_favorite_without_demo_fetches_row(self, fake, demo_ids, manager):
        now_favorited, error = manager.toggle_favorite(demo_ids[2])

        assert now_favorited is True and error is None
        assert [d.title for d in manager.favorites] == ["Gamma"]
        assert [d.title for d in manager.unorganized] == ["Gamma"]

    def test_unreadable_demo_row_keeps_favorite_link(self, fake, demo_ids, manager):
        fake.fail((cfg.DEMOS_TABLE, "select"), backend_down())

        now_favorited, error = manager.toggle_favorite(demo_ids[2])

        assert now_favorited is True and error is None
        assert manager.is_favorited(demo_ids[2])
        assert manager.favorites == []

    def test_failed_toggle_is_reverted(self, fake, demo_ids, manager):
        demo = manager.gateway.get_demo(demo_ids[0])
        fake.fail((cfg.FAVORITES_TABLE, "insert"), backend_down())

        now_favorited, error = manager.toggle_favorite(demo.id, demo)

        assert now_favorited is None
        assert error
        assert not manager.is_favorited(demo.id)
        assert manager.favorites == []
        assert manager.mutations[-1].status == MutationStatus.FAILED

    def test_stale_view_follows_backend(self, fake, users, demo_ids, manager):
        # Favorited in another tab after this manager loaded
        fake.seed_favorite(users["user"], demo_ids[0])

        now_favorited, error = manager.toggle_favorite(demo_ids[0])

        assert error is None
        assert now_favorited is False
        assert not manager.is_favorited(demo_ids[0])


class TestFolders:

    def test_move_is_idempotent(self, fake, demo_ids, manager):
        manager.toggle_favorite(demo_ids[0], manager.gateway.get_demo(demo_ids[0]))
        folder, _ = manager.create_folder("Clients")

        assert manager.move_to_folder(demo_ids[0], folder.id) == (True, None)
        updates_after_first = fake.calls.count((cfg.FAVORITES_TABLE, "update"))
        assert manager.move_to_folder(demo_ids[0], folder.id) == (True, None)

        assert fake.calls.count((cfg.FAVORITES_TABLE, "update")) == updates_after_first
        assert manager.folder_of(demo_ids[0]) == folder.id
        assert folder_titles(manager.folder(folder.id)) == ["Alpha"]
        assert manager.unorganized == []

    def test_detaching_twice_is_a_no_op(self, fake, demo_ids, manager):
        manager.toggle_favorite(demo_ids[0], manager.gateway.get_demo(demo_ids[0]))

        assert manager.move_to_folder(demo_ids[0], None) == (True, None)
        assert manager.move_to_folder(demo_ids[0], None) == (True, None)

        assert (cfg.FAVORITES_TABLE, "update") not in fake.calls
        assert [d.title for d in manager.unorganized] == ["Alpha"]

    def test_move_back_to_unorganized(self, fake, users, demo_ids, manager):
        manager.toggle_favorite(demo_ids[0], manager.gateway.get_demo(demo_ids[0]))
        folder, _ = manager.create_folder("Clients")
        manager.move_to_folder(demo_ids[0], folder.id)

        ok, _ = manager.move_to_folder(demo_ids[0], cfg.UNORGANIZED_FOLDER_ID)

        assert ok
        assert manager.folder_of(demo_ids[0]) is None
        assert fake.row(cfg.FAVORITES_TABLE, demo_id=demo_ids[0])["folder_id"] is None

    def test_move_rejects_unknown_folder_and_unfavorited_demo(self, demo_ids, manager):
        manager.toggle_favorite(demo_ids[0], manager.gateway.get_demo(demo_ids[0]))

        ok, error = manager.move_to_folder(demo_ids[0], "nope")
        assert not ok and "not found" in error

        ok, error = manager.move_to_folder(demo_ids[1], cfg.UNORGANIZED_FOLDER_ID)
        assert not ok and "not in your favorites" in error

    def test_deleting_folder_returns_demos_to_unorganized(self, fake, users, demo_ids, manager):
        demo = manager.gateway.get_demo(demo_ids[0])
        manager.toggle_favorite(demo.id, demo)
        clients, _ = manager.create_folder("Clients")
        manager.move_to_folder(demo.id, clients.id)

        ok, error = manager.delete_folder(clients.id)

        assert ok and error is None
        assert manager.folder(clients.id) is None
        assert manager.is_favorited(demo.id)
        assert [d.title for d in manager.unorganized] == ["Alpha"]
        assert fake.row(cfg.FAVORITES_TABLE, demo_id=demo.id)["folder_id"] is None
        assert fake.row(cfg.DEMOS_TABLE, id=demo.id) is not None
        assert fake.row(cfg.FOLDERS_TABLE, id=clients.id) is None

    def test_unorganized_cannot_be_deleted(self, manager):
        ok, error = manager.delete_folder(cfg.UNORGANIZED_FOLDER_ID)
        assert not ok
        assert "cannot be deleted" in error

    def test_folder_name_required(self, manager):
        folder, error = manager.create_folder("   ")
        assert folder is None
        assert error == "Folder name is required"

    def test_rename_folder(self, manager):
        folder, _ = manager.create_folder("Clients")

        updated, error = manager.update_folder(folder.id, name="Customers")

        assert error is None
        assert updated.name == "Customers"
        assert manager.folder(folder.id).name == "Customers"


class TestGlobalFolders:

    def test_non_super_admin_cannot_create(self, fake, manager):
        folder, error = manager.create_global_folder("Showcase")

        assert folder is None
        assert error == ACCESS_DENIED
        assert fake.tables[cfg.FOLDERS_TABLE] == []
        assert manager.global_folders == []

    def test_backend_rejection_is_access_denied(self, fake, gateway, users):
        fake.login_as(users["super_admin"])
        fake.fail((cfg.FOLDERS_TABLE, "insert"), permission_denied())
        manager = FavoritesManager(gateway, users["super_admin"])

        folder, error = manager.create_global_folder("Showcase")

        assert folder is None
        assert error == ACCESS_DENIED

    def test_global_folder_pools_every_users_favorites(self, fake, gateway, users, demo_ids):
        showcase = fake.seed_folder("Showcase", users["super_admin"], is_global=True)
        fake.seed_favorite(users["super_admin"], demo_ids[0], showcase)
        fake.seed_favorite(users["other"], demo_ids[1], showcase)
        fake.seed_favorite(users["other"], demo_ids[0], showcase)

        fake.login_as(users["user"])
        manager = FavoritesManager(gateway, users["user"])
        manager.load()

        assert [f.name for f in manager.global_folders] == ["Showcase"]
        # Alpha filed twice, listed once
        assert folder_titles(manager.global_folders[0]) == ["Alpha", "Beta"]
        assert manager.favorites == []

    def test_filing_into_global_folder_adds_to_pool(self, fake, gateway, users, demo_ids):
        showcase = fake.seed_folder("Showcase", users["super_admin"], is_global=True)
        fake.login_as(users["user"])
        manager = FavoritesManager(gateway, users["user"])
        manager.load()
        demo = manager.gateway.get_demo(demo_ids[2])
        manager.toggle_favorite(demo.id, demo)

        ok, _ = manager.move_to_folder(demo.id, showcase)

        assert ok
        assert folder_titles(manager.folder(showcase)) == ["Gamma"]
        assert manager.unorganized == []

    def test_user_cannot_delete_global_folder(self, fake, users, manager):
        showcase = fake.seed_folder("Showcase", users["super_admin"], is_global=True)
        manager.load()

        ok, error = manager.delete_folder(showcase)

        assert not ok
        assert error == ACCESS_DENIED
        assert fake.row(cfg.FOLDERS_TABLE, id=showcase) is not None

    def test_super_admin_deletes_global_folder_for_everyone(self, fake, gateway, users, demo_ids):
        showcase = fake.seed_folder("Showcase", users["super_admin"], is_global=True)
        fake.seed_favorite(users["other"], demo_ids[0], showcase)
        fake.login_as(users["super_admin"])
        manager = FavoritesManager(gateway, users["super_admin"])
        manager.load()

        ok, _ = manager.delete_folder(showcase)

        assert ok
        assert manager.global_folders == []
        assert fake.row(cfg.FAVORITES_TABLE, user_id=users["other"])["folder_id"] is None
