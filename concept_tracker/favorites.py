"""
Concept Tracker — Favorites & Folders

Joins a user's favorite links against folder metadata to produce the views
the Favorites tab renders:

    favorites       flat list of this user's favorited demos (any folder)
    folders         "Unorganized" bucket + this user's personal folders
    global_folders  shared folders, pooled from every user's favorites

Raw rows from the gateway are kept as-is; the three views are rebuilt from
them after every load or mutation rather than patched in place.

VERSION HISTORY:
----------------
v1.0.0: Initial release
  - load() keeps last-known-good state when any fetch fails
  - toggle_favorite() is optimistic and reverts when the backend rejects it
  - delete_folder() returns the folder's favorites to Unorganized
"""

import copy
import logging
from typing import Dict, List, Optional, Tuple

from . import config as cfg
from .errors import ACCESS_DENIED, ConceptTrackerError, ForbiddenError
from .gateway import ConceptGateway
from .models import Demo, FavoriteLink, Folder, Mutation

logger = logging.getLogger(__name__)

LinkedDemo = Tuple[FavoriteLink, Optional[Demo]]


def _normalize_folder_id(folder_id: Optional[str]) -> Optional[str]:
    """None and the Unorganized sentinel both mean "no folder"."""
    if folder_id is None or folder_id == cfg.UNORGANIZED_FOLDER_ID:
        return None
    return folder_id


class FavoritesManager:
    """A single user's favorites, personal folders and the shared global folders."""

    def __init__(self, gateway: ConceptGateway, user_id: str):
        self.gateway = gateway
        self.user_id = user_id

        # Raw state, as loaded
        self._mine: Dict[str, LinkedDemo] = {}
        self._personal_meta: List[Folder] = []
        self._global_meta: List[Folder] = []
        self._global_links: List[LinkedDemo] = []
        # Every demo row seen so far, by id
        self._known: Dict[str, Demo] = {}

        # Derived views
        self.favorites: List[Demo] = []
        self.folders: List[Folder] = [Folder.unorganized([])]
        self.global_folders: List[Folder] = []

        self.loaded = False
        self.error: Optional[str] = None
        self.mutations: List[Mutation] = []

    # =========================================================================
    # Loading
    # =========================================================================

    def load(self) -> Tuple[bool, Optional[str]]:
        """
        Fetch favorites, personal folders, global folders and the global
        folders' contents from all users, then rebuild every view.

        Nothing is replaced unless all four fetches succeed.
        """
        try:
            mine = self.gateway.list_favorites(self.user_id)
            personal = self.gateway.list_personal_folders(self.user_id)
            global_meta = self.gateway.list_global_folders()
            global_links = self.gateway.list_global_folder_favorites(f.id for f in global_meta)
        except ConceptTrackerError as e:
            self.error = f"Failed to load favorites: {e}"
            logger.error(self.error)
            return False, self.error

        self._mine = {link.demo_id: (link, demo) for link, demo in mine}
        for _, demo in list(mine) + list(global_links):
            self._remember(demo)
        self._personal_meta = personal
        self._global_meta = global_meta
        self._global_links = list(global_links)
        self.error = None
        self.loaded = True
        self._rebuild()
        logger.info(
            f"Favorites loaded: {len(self.favorites)} demos, "
            f"{len(self._personal_meta)} folders, {len(self._global_meta)} global folders"
        )
        return True, None

    def refetch(self) -> Tuple[bool, Optional[str]]:
        return self.load()

    # =========================================================================
    # Queries
    # =========================================================================

    def is_favorited(self, demo_id: str) -> bool:
        return demo_id in self._mine

    @property
    def favorite_ids(self) -> List[str]:
        return list(self._mine)

    @property
    def unorganized(self) -> List[Demo]:
        return self.folders[0].demos

    def folder(self, folder_id: str) -> Optional[Folder]:
        for f in self.folders + self.global_folders:
            if f.id == folder_id:
                return f
        return None

    def folder_of(self, demo_id: str) -> Optional[str]:
        """Folder id the user filed demo_id under (None = unorganized)."""
        entry = self._mine.get(demo_id)
        return entry[0].folder_id if entry else None

    # =========================================================================
    # Favorites
    # =========================================================================

    def toggle_favorite(self, demo_id: str, demo: Demo = None) -> Tuple[Optional[bool], Optional[str]]:
        """
        Favorite or unfavorite a demo.

        Applies the change locally first, then confirms it with the backend;
        on failure the local state is restored. `demo` may be omitted: the
        row is taken from demos already loaded here, or fetched once the
        backend confirms the favorite.

        Returns:
            Tuple of (now_favorited, error_message)
        """
        mutation = Mutation(kind="toggle_favorite", target_id=demo_id)
        self.mutations.append(mutation)
        snapshot = self._snapshot()
        expected = not self.is_favorited(demo_id)
        demo = demo or self._known.get(demo_id)

        if expected:
            self._add_local(demo_id, demo)
        else:
            self._remove_local(demo_id)
        self._rebuild()

        try:
            now_favorited = self.gateway.toggle_favorite(self.user_id, demo_id)
        except ConceptTrackerError as e:
            self._restore(snapshot)
            mutation.fail(str(e))
            logger.warning(f"Favorite toggle reverted for {demo_id}: {e}")
            return None, str(e)

        # Follow the backend when our view was stale, and fill in a missing demo row
        entry = self._mine.get(demo_id)
        if now_favorited and (entry is None or entry[1] is None):
            demo = demo or self._fetch_demo(demo_id)
            link = entry[0] if entry else FavoriteLink(user_id=self.user_id, demo_id=demo_id)
            self._mine[demo_id] = (link, demo)
            self._remember(demo)
            self._rebuild()
        elif not now_favorited and entry is not None:
            self._remove_local(demo_id)
            self._rebuild()

        mutation.confirm()
        return now_favorited, None

    def move_to_folder(self, demo_id: str, folder_id: Optional[str]) -> Tuple[bool, Optional[str]]:
        """
        File a favorite under folder_id. None or "unorganized" detaches it.

        Moving a demo to the folder it is already in succeeds without a
        backend call.
        """
        if demo_id not in self._mine:
            return False, "Demo is not in your favorites"

        target = _normalize_folder_id(folder_id)
        if target is not None and target not in self._folder_ids():
            return False, f"Folder {folder_id} not found"

        link, demo = self._mine[demo_id]
        if link.folder_id == target:
            return True, None

        try:
            self.gateway.set_favorite_folder(self.user_id, demo_id, target)
        except ConceptTrackerError as e:
            return False, str(e)

        self._mine[demo_id] = (_relinked(link, target), demo)
        self._sync_global_link(demo_id)
        self._rebuild()
        return True, None

    # =========================================================================
    # Folders
    # =========================================================================

    def create_folder(self, name: str, description: str = None, color: str = None) -> Tuple[Optional[Folder], Optional[str]]:
        """Create a personal folder."""
        return self._create(name, description, color, is_global=False)

    def create_global_folder(self, name: str, description: str = None, color: str = None) -> Tuple[Optional[Folder], Optional[str]]:
        """Create a folder visible to everyone. Super-admin only."""
        return self._create(name, description, color, is_global=True)

    def update_folder(self, folder_id: str, **changes) -> Tuple[Optional[Folder], Optional[str]]:
        if _normalize_folder_id(folder_id) is None:
            return None, "The Unorganized folder cannot be edited"
        try:
            updated = self.gateway.update_folder(folder_id, changes)
        except ForbiddenError:
            return None, ACCESS_DENIED
        except ConceptTrackerError as e:
            return None, str(e)

        self._personal_meta = [updated if f.id == folder_id else f for f in self._personal_meta]
        self._global_meta = [updated if f.id == folder_id else f for f in self._global_meta]
        self._rebuild()
        return updated, None

    def delete_folder(self, folder_id: str) -> Tuple[bool, Optional[str]]:
        """
        Delete a folder. Its favorites (from every user, for a global folder)
        go back to Unorganized; demos and favorite links are kept.
        """
        if _normalize_folder_id(folder_id) is None:
            return False, "The Unorganized folder cannot be deleted"
        try:
            self.gateway.delete_folder(folder_id)
        except ForbiddenError:
            return False, ACCESS_DENIED
        except ConceptTrackerError as e:
            return False, str(e)

        for demo_id, (link, demo) in list(self._mine.items()):
            if link.folder_id == folder_id:
                self._mine[demo_id] = (_relinked(link, None), demo)
        self._global_links = [(l, d) for l, d in self._global_links if l.folder_id != folder_id]
        self._personal_meta = [f for f in self._personal_meta if f.id != folder_id]
        self._global_meta = [f for f in self._global_meta if f.id != folder_id]
        self._rebuild()
        return True, None

    def _create(self, name: str, description: Optional[str], color: Optional[str], is_global: bool):
        name = (name or "").strip()
        if not name:
            return None, "Folder name is required"
        meta = self._global_meta if is_global else self._personal_meta
        try:
            folder = self.gateway.insert_folder(
                name,
                description=description,
                color=color,
                is_global=is_global,
                sort_order=len(meta),
            )
        except ForbiddenError:
            return None, ACCESS_DENIED
        except ConceptTrackerError as e:
            return None, str(e)

        meta.append(folder)
        self._rebuild()
        return folder, None

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _folder_ids(self) -> set:
        return {f.id for f in self._personal_meta} | {f.id for f in self._global_meta}

    def _add_local(self, demo_id: str, demo: Optional[Demo]):
        self._mine[demo_id] = (FavoriteLink(user_id=self.user_id, demo_id=demo_id), demo)
        self._remember(demo)

    def _remember(self, demo: Optional[Demo]):
        if demo is not None:
            self._known[demo.id] = demo

    def _fetch_demo(self, demo_id: str) -> Optional[Demo]:
        try:
            return self.gateway.get_demo(demo_id)
        except ConceptTrackerError as e:
            logger.warning(f"Could not load demo {demo_id} for favorites: {e}")
            return None

    def _remove_local(self, demo_id: str):
        self._mine.pop(demo_id, None)
        self._sync_global_link(demo_id)

    def _sync_global_link(self, demo_id: str):
        """Keep this user's contribution to the global pool in line with _mine."""
        self._global_links = [
            (l, d) for l, d in self._global_links
            if not (l.user_id == self.user_id and l.demo_id == demo_id)
        ]
        entry = self._mine.get(demo_id)
        global_ids = {f.id for f in self._global_meta}
        if entry and entry[0].folder_id in global_ids:
            self._global_links.append(entry)

    def _rebuild(self):
        personal_ids = {f.id for f in self._personal_meta}
        global_ids = {f.id for f in self._global_meta}

        buckets: Dict[str, List[Demo]] = {fid: [] for fid in personal_ids}
        unorganized: List[Demo] = []
        favorites: List[Demo] = []
        for link, demo in self._mine.values():
            if demo is None:
                continue
            favorites.append(demo)
            if link.folder_id in personal_ids:
                buckets[link.folder_id].append(demo)
            elif link.folder_id in global_ids:
                continue
            else:
                # No folder, or a folder that no longer exists
                unorganized.append(demo)

        pooled: Dict[str, List[Demo]] = {fid: [] for fid in global_ids}
        seen: Dict[str, set] = {fid: set() for fid in global_ids}
        for link, demo in self._global_links:
            if demo is None or link.folder_id not in pooled:
                continue
            # Same demo filed by several users shows once
            if demo.id in seen[link.folder_id]:
                continue
            seen[link.folder_id].add(demo.id)
            pooled[link.folder_id].append(demo)

        self.favorites = favorites
        self.folders = [Folder.unorganized(unorganized)] + [
            f.with_demos(buckets[f.id]) for f in self._personal_meta
        ]
        self.global_folders = [f.with_demos(pooled[f.id]) for f in self._global_meta]

    def _snapshot(self):
        return copy.deepcopy((self._mine, self._personal_meta, self._global_meta, self._global_links))

    def _restore(self, snapshot):
        self._mine, self._personal_meta, self._global_meta, self._global_links = snapshot
        self._rebuild()


def _relinked(link: FavoriteLink, folder_id: Optional[str]) -> FavoriteLink:
    return FavoriteLink(
        user_id=link.user_id,
        demo_id=link.demo_id,
        folder_id=folder_id,
        id=link.id,
        created_at=link.created_at,
    )
