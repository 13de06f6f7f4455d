"""
Lyzr Concept Tracker — Demo Catalog Dashboard

Catalog, favorite and track engagement on internal demo applications.
Backed by Supabase (auth, Postgres, storage) through the concept_tracker
package.

Run:
    streamlit run app.py
"""

import sys
from pathlib import Path
# Ensure repo root is in path for concept_tracker import
sys.path.insert(0, str(Path(__file__).parent))

import logging
import uuid
from typing import Optional

import pandas as pd
import plotly.graph_objects as go
import streamlit as st

from concept_tracker import analytics
from concept_tracker import config as cfg
from concept_tracker.catalog import (
    DemoCatalog,
    all_tags,
    featured_demos,
    filter_demos,
    recent_demos,
    sort_demos,
    trending_demos,
)
from concept_tracker.errors import ConfigurationError
from concept_tracker.favorites import FavoritesManager
from concept_tracker.gateway import ConceptGateway
from concept_tracker.models import Demo, MutationStatus
from concept_tracker.tracking import ActivityTracker
from concept_tracker.users import UserDirectory
from concept_tracker.verify import check_storage, verify_database_setup

logger = logging.getLogger(__name__)


# ============================================================================
# APP VERSION
# ============================================================================

APP_VERSION = cfg.APP_VERSION

VERSION_HISTORY = [
    "INITIAL v1.0.0: Featured / Catalog / Favorites / Add / Analytics / Admin sections on Supabase",
]

SECTIONS = ["Featured", "Catalog", "Favorites", "Add Demo", "Analytics", "Admin"]
ADMIN_SECTIONS = {"Add Demo", "Admin"}

TIER_COLORS = ["#10B981", "#3B82F6", "#F59E0B", "#F97316", "#9CA3AF"]


# ============================================================================
# STARTUP
# ============================================================================

def init_gateway() -> Optional[ConceptGateway]:
    """Create the gateway once per browser session; config errors stop the app."""
    if "gateway" in st.session_state:
        return st.session_state.gateway

    try:
        settings = cfg.load_settings()
    except ConfigurationError as e:
        render_config_error(e)
        st.stop()

    st.session_state.gateway = ConceptGateway.from_settings(settings)
    return st.session_state.gateway


def render_config_error(error: ConfigurationError):
    st.error("❌ Configuration error")
    st.markdown("The dashboard cannot start because these connection variables are missing:")
    for name in error.missing:
        st.code(name)
    st.caption("Set them as environment variables or add a [supabase] section (url, key) to secrets.toml.")


def ensure_backend_ready(gateway: ConceptGateway) -> bool:
    """Verify the backend once per session; offer a retry button on failure."""
    if st.session_state.get("setup_ok"):
        return True

    with st.spinner("Verifying database setup..."):
        check = verify_database_setup(gateway)

    if not check.success:
        st.error(f"❌ Backend unavailable: {check.error}")
        if st.button("Retry", key="retry_setup"):
            st.rerun()
        return False

    check_storage(gateway)
    st.session_state.setup_ok = True
    return True


# ============================================================================
# SESSION STATE
# ============================================================================

def init_user_state(gateway: ConceptGateway, profile):
    """Stores are created once per login and kept in session state."""
    if st.session_state.get("state_user") == profile.user_id:
        return
    st.session_state.state_user = profile.user_id
    st.session_state.profile = profile

    catalog = DemoCatalog(gateway)
    catalog.fetch()
    st.session_state.catalog = catalog

    favorites = FavoritesManager(gateway, profile.user_id)
    favorites.load()
    st.session_state.favorites = favorites

    tracker = ActivityTracker(gateway, profile.user_id)
    tracker.start_session(user_agent=_user_agent(), referrer=None)
    st.session_state.tracker = tracker


def clear_user_state():
    tracker = st.session_state.get("tracker")
    if tracker:
        tracker.end_session()
    for key in ("state_user", "profile", "catalog", "favorites", "tracker", "section"):
        st.session_state.pop(key, None)


def _user_agent() -> Optional[str]:
    try:
        return st.context.headers.get("User-Agent")
    except Exception:
        return None


# ============================================================================
# AUTHENTICATION UI
# ============================================================================

def render_auth_sidebar(directory: UserDirectory):
    """Login / sign-up in the sidebar. Returns the active profile or None."""
    profile = st.session_state.get("profile")
    if profile:
        st.sidebar.success(f"✅ {profile.display_name or profile.email}")
        st.sidebar.caption(f"Role: {profile.role}")
        if st.sidebar.button("Logout", key="logout_btn", use_container_width=True):
            clear_user_state()
            directory.sign_out()
            st.rerun()
        return profile

    st.sidebar.warning("Not logged in")
    with st.sidebar.expander("🔐 Login / Sign Up", expanded=True):
        tab1, tab2, tab3 = st.tabs(["Login", "Sign Up", "Reset"])

        with tab1:
            email = st.text_input("Email", key="login_email")
            password = st.text_input("Password", type="password", key="login_pass")
            if st.button("Login", key="login_btn", use_container_width=True):
                if email and password:
                    profile, error = directory.sign_in(email, password)
                    if profile:
                        st.session_state.profile = profile
                        st.rerun()
                    else:
                        st.error(f"Login failed: {error}")
                else:
                    st.warning("Enter email and password")

        with tab2:
            signup_email = st.text_input("Email", key="signup_email")
            signup_name = st.text_input("Display name", key="signup_name")
            signup_pass = st.text_input("Password", type="password", key="signup_pass")
            if st.button("Sign Up", key="signup_btn", use_container_width=True):
                ok, error = directory.sign_up(signup_email, signup_pass, signup_name or None)
                if ok:
                    st.success("✅ Check email to confirm")
                else:
                    st.error(f"Signup failed: {error}")

        with tab3:
            reset_email = st.text_input("Email", key="reset_email")
            if st.button("Send reset link", key="reset_btn", use_container_width=True):
                ok, error = directory.gateway.reset_password(reset_email)
                if ok:
                    st.success("Reset link sent")
                else:
                    st.error(error)
    return None


# ============================================================================
# DEMO CARDS
# ============================================================================

def render_demo_card(demo: Demo, key_prefix: str):
    catalog: DemoCatalog = st.session_state.catalog
    favorites: FavoritesManager = st.session_state.favorites
    tracker: ActivityTracker = st.session_state.tracker
    profile = st.session_state.profile

    with st.container(border=True):
        star = "⭐ " if demo.is_featured else ""
        st.markdown(f"**{star}{demo.title}**")
        st.caption(f"{demo.owner} · 👁️ {demo.page_views:,} views")
        if demo.screenshot_url:
            st.image(demo.screenshot_url, use_container_width=True)
        st.write(demo.description)
        if demo.tags:
            st.caption(" ".join(f"`{t}`" for t in demo.tags))

        if st.button("🔍 Details", key=f"{key_prefix}_details_{demo.id}"):
            tracker.track_demo_view(demo.id, demo.title)
            st.session_state.open_details = demo.id
        if st.session_state.get("open_details") == demo.id:
            links = [
                ("Design", demo.excalidraw_url), ("Docs", demo.supabase_url),
                ("Resources", demo.admin_url), ("Video", demo.video_url),
            ]
            st.markdown(" · ".join(f"[{name}]({url})" for name, url in links if url) or "No extra links")

        cols = st.columns(4)
        with cols[0]:
            if demo.netlify_url and st.button("🚀 Try app", key=f"{key_prefix}_try_{demo.id}"):
                mutation = catalog.increment_page_views(demo.id)
                tracker.track_try_app(demo.id, demo.title, demo.netlify_url)
                if mutation.status == MutationStatus.FAILED:
                    st.toast("View count could not be saved")
                st.markdown(f"[Open {demo.title}]({demo.netlify_url})")
        with cols[1]:
            label = "💔 Unfavorite" if favorites.is_favorited(demo.id) else "❤️ Favorite"
            if st.button(label, key=f"{key_prefix}_fav_{demo.id}"):
                now_favorited, error = favorites.toggle_favorite(demo.id, demo)
                if error:
                    st.toast(f"Favorite failed: {error}")
                else:
                    tracker.track_demo_favorite(demo.id, demo.title, now_favorited)
                    st.rerun()
        if profile.is_admin:
            with cols[2]:
                feature_label = "Unfeature" if demo.is_featured else "Feature"
                if st.button(feature_label, key=f"{key_prefix}_feat_{demo.id}"):
                    _, error = catalog.toggle_featured(demo.id)
                    if error:
                        st.toast(f"Update failed: {error}")
                    else:
                        st.rerun()
            with cols[3]:
                if st.button("🗑️ Delete", key=f"{key_prefix}_del_{demo.id}"):
                    st.session_state.pending_delete = demo.id
                if st.session_state.get("pending_delete") == demo.id:
                    if st.button("Confirm delete", key=f"{key_prefix}_confirm_{demo.id}", type="primary"):
                        ok, error = catalog.delete_demo(demo.id)
                        st.session_state.pending_delete = None
                        if ok:
                            favorites.refetch()
                            st.rerun()
                        st.toast(f"Delete failed: {error}")


def render_demo_grid(demos, key_prefix: str, columns: int = 3):
    if not demos:
        st.info("No demos to show")
        return
    cols = st.columns(columns)
    for i, demo in enumerate(demos):
        with cols[i % columns]:
            render_demo_card(demo, key_prefix)


def render_fetch_error(message: str, retry_key: str, on_retry):
    st.error(f"Failed to load: {message}")
    if st.button("Retry", key=retry_key):
        on_retry()
        st.rerun()


# ============================================================================
# SECTIONS
# ============================================================================

def render_featured(demos):
    view = st.radio("Show", ["Featured", "Recent", "Trending"], horizontal=True, key="featured_view")
    if view == "Recent":
        selected = recent_demos(demos)
        st.caption("New demos published in the last 7 days")
    elif view == "Trending":
        selected = trending_demos(demos)
        st.caption("Popular demos with high engagement")
    else:
        selected = featured_demos(demos)
        st.caption("Hand-picked demos showcasing our best work")
    st.caption(f"{len(selected)} demos · {sum(d.page_views for d in selected):,} total views")
    render_demo_grid(selected, "featured")


def render_catalog(demos):
    tracker: ActivityTracker = st.session_state.tracker
    col1, col2 = st.columns([3, 1])
    with col1:
        search = st.text_input("Search demos", key="catalog_search")
    with col2:
        tag = st.selectbox("Tag", ["All"] + all_tags(demos), key="catalog_tag")
    tag = None if tag == "All" else tag

    filtered = filter_demos(demos, search, tag)
    if search and search != st.session_state.get("last_search"):
        tracker.track_search(search, len(filtered))
        st.session_state.last_search = search
    if tag and tag != st.session_state.get("last_tag"):
        tracker.track_filter("tag", tag)
        st.session_state.last_tag = tag

    st.caption(f"{len(filtered)} demos found · Total views: {sum(d.page_views for d in filtered):,}")
    render_demo_grid(filtered, "catalog")


def render_favorites():
    favorites: FavoritesManager = st.session_state.favorites
    profile = st.session_state.profile

    if favorites.error:
        render_fetch_error(favorites.error, "retry_favorites", favorites.refetch)
    if not favorites.loaded:
        return

    total = sum(d.page_views for d in favorites.favorites)
    avg = analytics.average_views(favorites.favorites)
    st.caption(f"{len(favorites.favorites)} favorites · {total:,} views · {avg:,} avg")

    with st.expander("📁 New folder"):
        name = st.text_input("Folder name", key="new_folder_name")
        description = st.text_input("Description", key="new_folder_desc")
        make_global = profile.is_super_admin and st.checkbox("Global folder (visible to everyone)", key="new_folder_global")
        if st.button("Create folder", key="create_folder_btn"):
            create = favorites.create_global_folder if make_global else favorites.create_folder
            folder, error = create(name, description or None)
            if error:
                st.toast(f"Folder not created: {error}")
            else:
                st.rerun()

    sort_by = st.radio("Sort", list(cfg.SORT_OPTIONS), horizontal=True, key="fav_sort")
    folder_choices = {f.name: f.id for f in favorites.folders + favorites.global_folders}

    for folder in favorites.folders + favorites.global_folders:
        badge = "🌐 " if folder.is_global else "📁 "
        with st.expander(f"{badge}{folder.name} ({len(folder.demos)})", expanded=folder.is_unorganized):
            if not folder.is_unorganized and st.button("Delete folder", key=f"delfolder_{folder.id}"):
                ok, error = favorites.delete_folder(folder.id)
                if ok:
                    st.rerun()
                st.toast(f"Folder not deleted: {error}")
            for demo in sort_demos(folder.demos, sort_by):
                c1, c2 = st.columns([3, 2])
                c1.markdown(f"**{demo.title}** · {demo.owner} · 👁️ {demo.page_views:,}")
                if favorites.is_favorited(demo.id):
                    target = c2.selectbox(
                        "Move to", list(folder_choices), key=f"move_{folder.id}_{demo.id}",
                        index=list(folder_choices.values()).index(folder.id) if folder.id in folder_choices.values() else 0,
                    )
                    if folder_choices[target] != folder.id:
                        ok, error = favorites.move_to_folder(demo.id, folder_choices[target])
                        if ok:
                            st.rerun()
                        st.toast(f"Move failed: {error}")


def render_add_demo():
    catalog: DemoCatalog = st.session_state.catalog
    with st.form("add_demo_form", clear_on_submit=True):
        title = st.text_input("Title *")
        description = st.text_area("Description *")
        owner = st.text_input("Owner *", value=st.session_state.profile.display_name or "")
        tags = st.text_input("Tags * (comma separated)")
        netlify_url = st.text_input("App URL *")
        excalidraw_url = st.text_input("Design URL")
        supabase_url = st.text_input("Docs URL")
        admin_url = st.text_input("Resource URL")
        video_url = st.text_input("Video URL")
        screenshot = st.file_uploader("Screenshot", type=["png", "jpg", "jpeg", "webp"])
        is_featured = st.checkbox("Featured")
        submitted = st.form_submit_button("Add demo")

    if not submitted:
        return

    screenshot_url = None
    if screenshot is not None:
        screenshot_url, error = catalog.upload_screenshot(screenshot.getvalue(), f"temp-{uuid.uuid4().hex[:8]}", screenshot.type)
        if error:
            st.warning(f"Screenshot not uploaded: {error}")

    demo, error = catalog.add_demo({
        "title": title,
        "description": description,
        "owner": owner,
        "tags": [t.strip() for t in tags.split(",") if t.strip()],
        "netlify_url": netlify_url,
        "excalidraw_url": excalidraw_url or None,
        "supabase_url": supabase_url or None,
        "admin_url": admin_url or None,
        "video_url": video_url or None,
        "screenshot_url": screenshot_url,
        "is_featured": is_featured,
    })
    if error:
        st.error(f"Could not add demo: {error}")
    else:
        st.success(f"✅ Added {demo.title}")


def render_analytics(demos):
    gateway: ConceptGateway = st.session_state.gateway
    profile = st.session_state.profile
    snapshot = analytics.build_snapshot(demos, gateway, user_id=profile.user_id)
    overview = snapshot.overview

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Total Views", f"{overview.total_views:,}")
    c2.metric("Total Demos", overview.total_demos)
    c3.metric("Avg Views/Demo", overview.average_views)
    c4.metric("Engagement Score", f"{overview.engagement_score}/100")

    c5, c6, c7, c8 = st.columns(4)
    c5.metric("Growth (30d)", f"{overview.growth_rate}%")
    c6.metric("Weekly Growth", f"{overview.weekly_growth}%")
    c7.metric("High Performers", overview.high_performers)
    c8.metric("Sessions (30d)", snapshot.sessions.total_sessions)

    st.plotly_chart(create_daily_chart(snapshot.daily), use_container_width=True)

    col1, col2 = st.columns(2)
    with col1:
        st.plotly_chart(create_tag_chart(snapshot.tags), use_container_width=True)
    with col2:
        st.plotly_chart(create_tier_chart(snapshot.tiers), use_container_width=True)

    st.subheader("🏆 Owner Leaderboard")
    st.dataframe(snapshot.owners, use_container_width=True, hide_index=True)

    st.subheader("📈 Top Demos")
    st.dataframe(
        pd.DataFrame([{"title": d.title, "owner": d.owner, "views": d.page_views} for d in snapshot.top]),
        use_container_width=True, hide_index=True,
    )

    st.subheader("⚡ Recent Activity")
    if not snapshot.activity:
        st.caption("No activity recorded yet")
    for entry in snapshot.activity[:20]:
        when = entry.created_at.strftime("%Y-%m-%d %H:%M") if entry.created_at else ""
        st.markdown(f"- {when} · {analytics.describe_activity(entry)}")

    st.subheader("🩺 Demo Health")
    if profile.is_admin and st.button("Refresh scores", key="health_refresh"):
        if analytics.refresh_health_scores(gateway):
            st.rerun()
        st.toast("Health scores could not be refreshed")
    if not snapshot.health:
        st.caption("No health scores calculated yet")
    else:
        st.dataframe(analytics.health_table(snapshot.health), use_container_width=True, hide_index=True)

    st.subheader("🙋 Your Engagement")
    mine = snapshot.engagement
    e1, e2, e3, e4 = st.columns(4)
    e1.metric("Views", mine.views)
    e2.metric("Favorites added", mine.favorites_added)
    e3.metric("Streak (days)", mine.current_streak_days if mine.current_streak_days is not None else "n/a")
    e4.metric("Favorite tag", mine.favorite_tag or "n/a")


def render_admin():
    directory = UserDirectory(st.session_state.gateway)
    profiles, error = directory.list_profiles()
    if error:
        st.error(error)
        return

    st.metric("Users", len(profiles))
    st.dataframe(
        pd.DataFrame([{
            "email": p.email, "name": p.display_name, "role": p.role,
            "active": p.is_active, "last_login": p.last_login,
        } for p in profiles]),
        use_container_width=True, hide_index=True,
    )

    if not st.session_state.profile.is_super_admin:
        return
    st.subheader("Change role")
    emails = {p.email: p.user_id for p in profiles}
    if not emails:
        return
    target = st.selectbox("User", list(emails), key="role_user")
    role = st.selectbox("Role", list(cfg.ROLES), key="role_value")
    if st.button("Update role", key="role_btn"):
        ok, error = directory.update_role(emails[target], role)
        if ok:
            st.success("Role updated")
        else:
            st.error(error)


# ============================================================================
# CHARTS
# ============================================================================

def create_daily_chart(daily: pd.DataFrame) -> go.Figure:
    fig = go.Figure()
    fig.add_trace(go.Bar(x=daily["date"], y=daily["demos"], name="Demos created", marker_color="#3B82F6"))
    fig.add_trace(go.Scatter(x=daily["date"], y=daily["views"], name="Views", yaxis="y2", line=dict(color="#10B981")))
    fig.update_layout(
        title="Last 30 Days",
        yaxis=dict(title="Demos"),
        yaxis2=dict(title="Views", overlaying="y", side="right"),
        height=320, margin=dict(l=20, r=20, t=40, b=20),
    )
    return fig


def create_tag_chart(tags: pd.DataFrame) -> go.Figure:
    top = tags.head(10)
    fig = go.Figure()
    fig.add_trace(go.Bar(
        x=top["total_views"], y=top["tag"], orientation="h",
        marker_color="#8B5CF6", text=top["count"], textposition="auto",
        hovertemplate="<b>%{y}</b><br>%{x} views<extra></extra>",
    ))
    fig.update_layout(title="Tag Popularity", xaxis_title="Views", height=max(250, len(top) * 30),
                      margin=dict(l=20, r=20, t=40, b=20), yaxis=dict(autorange="reversed"))
    return fig


def create_tier_chart(tiers) -> go.Figure:
    fig = go.Figure()
    fig.add_trace(go.Pie(labels=list(tiers), values=list(tiers.values()), marker=dict(colors=TIER_COLORS), hole=0.4))
    fig.update_layout(title="Performance Tiers", height=320, margin=dict(l=20, r=20, t=40, b=20))
    return fig


# ============================================================================
# STREAMLIT UI
# ============================================================================

def main():
    st.set_page_config(page_title=cfg.APP_NAME, page_icon="🧪", layout="wide")
    cfg.configure_logging()

    st.title(f"🧪 {cfg.APP_NAME}")
    st.markdown(f"*Demo catalog & engagement tracking* — v{APP_VERSION}")

    gateway = init_gateway()
    if not ensure_backend_ready(gateway):
        st.stop()

    directory = UserDirectory(gateway)
    profile = render_auth_sidebar(directory)
    if not profile:
        st.info("Log in from the sidebar to browse demos.")
        st.stop()

    init_user_state(gateway, profile)
    catalog: DemoCatalog = st.session_state.catalog
    tracker: ActivityTracker = st.session_state.tracker

    sections = [s for s in SECTIONS if profile.is_admin or s not in ADMIN_SECTIONS]
    section = st.radio("Section", sections, horizontal=True, label_visibility="collapsed", key="section_radio")
    if section != st.session_state.get("section"):
        tracker.track_tab_change(section)
        st.session_state.section = section

    if st.sidebar.button("🔄 Refresh data", use_container_width=True):
        catalog.refetch()
        st.session_state.favorites.refetch()

    if catalog.error and section != "Favorites":
        render_fetch_error(catalog.error, "retry_demos", catalog.refetch)

    demos = catalog.demos
    if section == "Featured":
        render_featured(demos)
    elif section == "Catalog":
        render_catalog(demos)
    elif section == "Favorites":
        render_favorites()
    elif section == "Add Demo":
        render_add_demo()
    elif section == "Analytics":
        render_analytics(demos)
    elif section == "Admin":
        render_admin()


if __name__ == "__main__":
    main()
