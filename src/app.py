"""Study Lens main entry point."""

from __future__ import annotations

import logging
from typing import Any

import streamlit as st
import streamlit.components.v1 as components

from config import (
    PAGE_ICON,
    PAGE_TITLE,
    SIDEBAR_TITLE,
    TAB_DOCUMENT,
    TAB_QUIZ,
    TAB_VIDEO,
    Settings,
    load_settings,
)
from migrations.migrate import MigrationError, MigrationInProgressError, migrate_to_latest
from services.chat_stream import ChatBusyError, ChatReassembler, chat_payload, quick_actions, quiz_question_context
from services.document_search import Debouncer, DocumentSearch
from services.mastery_tracker import QuizHistoryLog
from services.models import ChatContext, Study, StudyValidationError
from services.question_recommender import VALID_MODES, learned_progress
from services.quiz_service import QuizWorkspace
from services.study_api import PDF_MIME, ApiError, AuthenticationError, StudyApiClient, UploadFile
from services.study_store import StudyStore, mark_all_topics_learned, toggle_topic_learned
from services.video_service import VideoGenerationError, VideoGenerator, video_progress_message
from utils import metrics
from utils.document_view import (
    DOCUMENT_VIEW_HEIGHT,
    SEARCH_CLOSE_LABEL,
    SEARCH_INPUT_LABEL,
    SEARCH_NEXT_LABEL,
    SEARCH_OPEN_LABEL,
    SEARCH_PREV_LABEL,
    DocumentSection,
    build_document_html,
)

LOGGER = logging.getLogger("study.app")

_MIGRATIONS_DONE = False

MODE_LABELS = {
    "all": "All topics",
    "to_learn": "To learn",
    "review": "Review",
    "custom": "Custom",
}


def _settings() -> Settings:
    if "settings" not in st.session_state:
        st.session_state["settings"] = load_settings()
    return st.session_state["settings"]


def _ensure_migrations_once() -> int:
    global _MIGRATIONS_DONE
    settings = _settings()
    metrics.configure(settings.db_path)
    if _MIGRATIONS_DONE and "schema_version" in st.session_state:
        return int(st.session_state["schema_version"])
    try:
        version = migrate_to_latest(settings.db_path)
    except MigrationInProgressError:
        if not st.session_state.get("migration_in_progress_notice_shown"):
            st.info("Migration in progress. Please refresh shortly.")
            st.session_state["migration_in_progress_notice_shown"] = True
        return int(st.session_state.get("schema_version", 0))
    except MigrationError as e:
        st.error(f"{e}")
        st.error(f"Recovery: restore from backups in {settings.db_path.parent / 'backups'}")
        st.stop()
    _MIGRATIONS_DONE = True
    st.session_state["migration_in_progress_notice_shown"] = False
    st.session_state["schema_version"] = version
    return version


def _api() -> StudyApiClient:
    if "api" not in st.session_state:
        settings = _settings()
        st.session_state["api"] = StudyApiClient(settings.api_url, timeout=settings.http_timeout_s)
    return st.session_state["api"]


def _store() -> StudyStore | None:
    return st.session_state.get("store")


def _study() -> Study | None:
    store = _store()
    return store.study if store else None


def _clear_study_state() -> None:
    keys = ("store", "quiz_ws", "chat", "search", "video", "active_study_id", "server_recommendation", "chat_synced")
    for key in keys:
        st.session_state.pop(key, None)


def _open_study(study_id: str) -> None:
    """Load one study and build every per-study helper around a shared store."""
    api = _api()
    try:
        study, recommendation = api.get_study(study_id)
    except AuthenticationError:
        _sign_out(call_backend=False)
        st.rerun()
    except ApiError as e:
        st.error(str(e))
        return
    settings = _settings()
    store = StudyStore(study)
    st.session_state["store"] = store
    st.session_state["quiz_ws"] = QuizWorkspace(api, store)
    st.session_state["chat"] = ChatReassembler(study.chat_histories)
    st.session_state["search"] = DocumentSearch(Debouncer(delay=0.0))
    st.session_state["video"] = VideoGenerator(
        api, store, settings.video_ws_url, timeout=settings.video_timeout_s
    )
    st.session_state["active_study_id"] = study.id
    st.session_state.pop("chat_synced", None)
    st.session_state["server_recommendation"] = recommendation
    LOGGER.info("study.open(id=%s,topics=%s)", study.id, len(study.topics))


def _sign_out(call_backend: bool = True) -> None:
    api = st.session_state.get("api")
    if call_backend and api is not None:
        try:
            api.logout()
        except ApiError as e:
            LOGGER.error("Logout failed: %s", e)
    _clear_study_state()
    st.session_state.pop("api", None)
    st.session_state.pop("user", None)


# ---------- login ----------


def _render_login() -> None:
    st.title(f"{PAGE_ICON} {PAGE_TITLE}")
    with st.form("login_form"):
        email = st.text_input("Email")
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button("Sign in")
    if not submitted:
        return
    try:
        api = _api()
        st.session_state["user"] = api.login(email, password) or api.me() or {"email": email.strip().lower()}
    except StudyValidationError as e:
        st.error(str(e))
        return
    except ApiError as e:
        st.error(str(e))
        return
    st.rerun()


# ---------- sidebar ----------


def _render_create_study() -> None:
    with st.sidebar.expander("New study", expanded=False):
        source = st.radio("Source", ["Notes", "PDF"], horizontal=True, key="create_source")
        with st.form("create_study_form", clear_on_submit=True):
            title = st.text_input("Title")
            description = st.text_input("Description")
            notes = ""
            uploads: list[Any] = []
            if source == "Notes":
                notes = st.text_area("Notes", height=200)
            else:
                uploads = st.file_uploader("PDF files", type=["pdf"], accept_multiple_files=True) or []
            submitted = st.form_submit_button("Create study")
        if not submitted:
            return
        api = _api()
        try:
            with st.spinner("Building topics..."):
                if source == "Notes":
                    study = api.create_study_from_notes(title, description, notes)
                else:
                    files = [UploadFile.from_stream(f.name, f, f.type or PDF_MIME) for f in uploads]
                    study = api.create_study_from_pdfs(title, description, files)
        except StudyValidationError as e:
            st.error(str(e))
            return
        except ApiError as e:
            st.error(str(e))
            return
        _open_study(study.id)
        st.rerun()


def _render_sidebar() -> None:
    st.sidebar.markdown(f"### {SIDEBAR_TITLE}")
    user = st.session_state.get("user") or {}
    if user.get("email"):
        st.sidebar.caption(str(user["email"]))

    try:
        studies = _api().list_studies()
    except AuthenticationError:
        _sign_out(call_backend=False)
        st.rerun()
    except ApiError as e:
        st.sidebar.error(str(e))
        studies = []

    _render_create_study()

    if studies:
        ids = [s.id for s in studies]
        labels = {s.id: s.title or s.id for s in studies}
        current = st.session_state.get("active_study_id")
        selected = st.sidebar.radio(
            "Your studies",
            options=ids,
            index=ids.index(current) if current in ids else None,
            format_func=lambda sid: labels.get(sid, sid),
        )
        if selected and selected != current:
            _open_study(selected)
            st.rerun()
    else:
        st.sidebar.info("Create your first study to get started.")

    with st.sidebar.expander("Timings", expanded=False):
        summary = metrics.get_metrics_summary()
        if not summary:
            st.caption("No operations recorded yet.")
        for operation, row in summary.items():
            st.caption(f"{operation}: {row['total']} runs, avg {row['avg_s']}s, max {row['max_s']}s")

    if st.sidebar.button("Sign out", use_container_width=True):
        _sign_out()
        st.rerun()


# ---------- document tab ----------


def _render_search_bar(search: DocumentSearch) -> None:
    if not search.is_open:
        if st.button(SEARCH_OPEN_LABEL, key="search_open", help="Ctrl/Cmd+F"):
            search.handle_key("f", ctrl=True)
            st.rerun()
        return
    cols = st.columns([6, 1, 1, 1, 1])
    query = cols[0].text_input(
        SEARCH_INPUT_LABEL, key="search_query", placeholder="Search…", label_visibility="collapsed"
    )
    if query != search.query:
        search.type_query(query)
        search.tick()
    cols[1].markdown(f"**{search.position_label}**")
    if cols[2].button(SEARCH_PREV_LABEL, key="search_prev", disabled=search.total == 0):
        search.handle_key("Enter", shift=True)
        st.rerun()
    if cols[3].button(SEARCH_NEXT_LABEL, key="search_next", disabled=search.total == 0):
        search.handle_key("Enter")
        st.rerun()
    if cols[4].button(SEARCH_CLOSE_LABEL, key="search_close"):
        search.handle_key("Escape")
        st.session_state.pop("search_query", None)
        st.rerun()


def _render_topics_panel(study: Study) -> None:
    store, api = _store(), _api()
    learned, total = learned_progress(study.topics)
    st.progress(learned / total if total else 0.0, text=f"{learned}/{total} topics learned")
    c1, c2 = st.columns(2)
    if c1.button("Mark all learned", use_container_width=True, disabled=not study.topics):
        if not mark_all_topics_learned(store, api, True):
            st.warning("Could not save topic status.")
        st.rerun()
    if c2.button("Reset all", use_container_width=True, disabled=not study.topics):
        if not mark_all_topics_learned(store, api, False):
            st.warning("Could not save topic status.")
        st.rerun()
    for i, topic in enumerate(study.topics, 1):
        # Keyed on the stored flag so a store change renders a fresh widget.
        key = f"learned_{topic.id}_{int(topic.learned)}"
        checked = st.checkbox(f"{topic.icon} Unit {i}: {topic.title}", value=topic.learned, key=key)
        if checked != topic.learned:
            if not toggle_topic_learned(store, api, topic.id, checked):
                st.session_state.pop(key, None)
                st.warning(f"Could not save status for {topic.title}.")
            st.rerun()


def _render_document_tab(study: Study) -> None:
    search: DocumentSearch = st.session_state["search"]
    topics_col, body_col = st.columns([1, 3])
    with topics_col:
        _render_topics_panel(study)
    with body_col:
        if study.description:
            st.caption(study.description)
        if study.source_type == "pdf" and study.pdf_file_names:
            st.caption("Sources: " + ", ".join(study.pdf_file_names))
        nodes: list[str] = []
        for topic in study.topics:
            nodes.append(topic.title)
            nodes.append(topic.content)
        if not nodes:
            nodes = [study.content]
        search.set_content("\n".join(nodes))
        _render_search_bar(search)
        rendered = search.highlight(nodes)
        if study.topics:
            sections = [
                DocumentSection(
                    anchor=f"topic-{topic.id}",
                    heading=rendered[2 * i],
                    body=rendered[2 * i + 1],
                    title=f"Unit {i + 1}: {topic.title}",
                    icon=topic.icon,
                )
                for i, topic in enumerate(study.topics)
            ]
        else:
            sections = [DocumentSection(anchor="document", body=rendered[0])]
        page = build_document_html(
            sections,
            search.current_index,
            active_query=search.active_query,
            total=search.total,
            focus_search=search.take_focus_request(),
        )
        components.html(page, height=DOCUMENT_VIEW_HEIGHT, scrolling=False)


# ---------- quiz tab ----------


def _render_history(ws: QuizWorkspace) -> None:
    history: QuizHistoryLog = ws.history
    if not len(history):
        return
    with st.expander(f"Quiz history ({len(history)})", expanded=False):
        st.caption("Tick attempts to build the next quiz from their mistakes.")
        for entry in history.entries:
            c1, c2 = st.columns([5, 1])
            picked = c1.checkbox(
                f"{entry.taken_at[:16].replace('T', ' ')} · {entry.correct_count}/{entry.total_questions} "
                f"({round(entry.percentage)}%)",
                value=entry.id in history.selected_ids,
                key=f"history_pick_{entry.id}_{int(entry.id in history.selected_ids)}",
            )
            if picked != (entry.id in history.selected_ids):
                history.toggle_selected(entry.id)
            if c2.button("🗑", key=f"history_del_{entry.id}"):
                if not ws.delete_history(entry.id):
                    st.error("Failed to delete history entry.")
                st.rerun()

    mastered = ws.mastered()
    if mastered:
        with st.expander(f"Mastered concepts ({len(mastered)})", expanded=False):
            for concept in mastered:
                where = f" · {concept.topic_title}" if concept.topic_title else ""
                st.markdown(f"- **{concept.answer}** ×{concept.count}{where}  \n  {concept.question}")


def _render_quiz_setup(ws: QuizWorkspace, study: Study) -> None:
    modes = [m for m in VALID_MODES if ws.selection.mode_available(m)]
    mode = st.radio(
        "Topics",
        options=modes,
        index=modes.index(ws.selection.mode) if ws.selection.mode in modes else 0,
        format_func=lambda m: MODE_LABELS.get(m, m),
        horizontal=True,
    )
    if mode != ws.selection.mode:
        ws.set_mode(mode)
    if ws.selection.mode == "custom":
        presets = [("all", "Select all"), ("none", "Clear"), ("not_learned", "Not learned"), ("learned", "Learned")]
        for col, (preset, label) in zip(st.columns(len(presets)), presets):
            if col.button(label, key=f"quiz_preset_{preset}", use_container_width=True):
                ws.select_preset(preset)
                st.rerun()
        for topic in study.topics:
            chosen = ws.selection.includes(topic.id)
            picked = st.checkbox(f"{topic.icon} {topic.title}", value=chosen, key=f"quiz_topic_{topic.id}_{int(chosen)}")
            if picked != chosen:
                ws.toggle_topic(topic.id)
    else:
        ws.refresh_recommendation()

    rec = ws.count.recommendation
    count = st.slider(f"Questions ({rec.label})", min_value=rec.min, max_value=rec.max, value=ws.count.count)
    if count != ws.count.count:
        ws.count.set_count(count)
    ws.avoid_known = st.checkbox("Skip concepts I already know", value=ws.avoid_known)

    _render_history(ws)

    label = "Generate from selected mistakes" if ws.history.selected_ids else "Generate quiz"
    if st.button(label, type="primary", use_container_width=True):
        with st.spinner("Generating questions..."):
            ok = ws.generate("new")
        if not ok:
            st.error(ws.last_error or "Failed to generate quiz")
        else:
            st.rerun()


def _render_quiz_question(ws: QuizWorkspace) -> None:
    session = ws.session
    q = session.current_question
    total = len(session.questions)
    st.caption(f"Question {session.current_index + 1} of {total}")
    st.progress((session.current_index + 1) / total)
    st.markdown(f"#### {q.question}")

    selection = session.current_selection
    for i, option in enumerate(q.options):
        prefix = ""
        if session.current_answered:
            if i == q.correct_answer:
                prefix = "✅ "
            elif i == selection:
                prefix = "❌ "
        if st.button(f"{prefix}{chr(65 + i)}. {option}", key=f"opt_{session.current_index}_{i}", use_container_width=True):
            session.select_answer(i)
            st.rerun()

    if session.current_answered:
        if selection == q.correct_answer:
            st.success("Correct!")
        else:
            st.error(f"Correct answer: {q.options[q.correct_answer]}")
        if q.explanation:
            st.info(q.explanation)
    elif q.hint:
        if st.button("💡 Hint", key=f"hint_{session.current_index}"):
            session.toggle_hint()
            st.rerun()
        if session.show_hint:
            st.warning(q.hint)

    c1, c2 = st.columns(2)
    if c1.button("← Previous", disabled=session.current_index == 0, use_container_width=True):
        session.previous()
        st.rerun()
    if c2.button("See results" if session.is_last else "Next →", use_container_width=True):
        session.advance()
        st.rerun()

    dots = st.columns(min(total, 10))
    for i in range(total):
        marker = "●" if session.answered[i] else "○"
        if dots[i % len(dots)].button(f"{marker}{i + 1}", key=f"goto_{i}"):
            session.go_to(i)
            st.rerun()


def _render_quiz_results(ws: QuizWorkspace) -> None:
    score = ws.session.score()
    st.markdown(f"### {score.correct}/{score.total} correct ({score.percentage}%)")
    st.caption(f"{score.wrong} to review")

    if ws.analysis is None:
        if st.button("Analyze my results", use_container_width=True):
            with st.spinner("Analyzing..."):
                ws.analyze()
            st.rerun()
    else:
        st.markdown(ws.analysis)

    c1, c2, c3 = st.columns(3)
    if c1.button("Focus on mistakes", disabled=score.wrong == 0, use_container_width=True):
        with st.spinner("Generating questions..."):
            if not ws.generate("wrong_concepts"):
                st.error(ws.last_error or "Failed to generate quiz")
        st.rerun()
    if c2.button("Same topics again", use_container_width=True):
        with st.spinner("Generating questions..."):
            if not ws.generate("same_topics"):
                st.error(ws.last_error or "Failed to generate quiz")
        st.rerun()
    if c3.button("New quiz", use_container_width=True):
        ws.regenerate()
        st.rerun()

    with st.expander("Review answers"):
        for i, row in enumerate(ws.session.question_results()):
            icon = "✅" if row["isCorrect"] else "❌"
            st.markdown(f"{icon} **{i + 1}. {row['question']}**  \nYou: {row['userAnswer']} · Answer: {row['correctAnswer']}")
            if st.button("Revisit", key=f"revisit_{i}"):
                ws.session.go_to(i)
                st.rerun()


def _render_quiz_tab(study: Study) -> None:
    ws: QuizWorkspace = st.session_state["quiz_ws"]
    if not ws.session.has_questions:
        _render_quiz_setup(ws, study)
    elif ws.session.show_results:
        _render_quiz_results(ws)
    else:
        _render_quiz_question(ws)


# ---------- video tab ----------


def _render_video_tab(study: Study) -> None:
    generator: VideoGenerator = st.session_state["video"]
    missing = [t for t in study.topics if not t.video_url and not t.video_generating]
    if st.button(f"Generate all missing videos ({len(missing)})", disabled=not missing, use_container_width=True):
        status = st.status("Generating videos...", expanded=True)
        results = generator.generate_all(
            lambda tid, p: status.write(f"{tid}: {video_progress_message(p.status, p.progress, p.error)}")
        )
        status.update(label=f"{len(results)} of {len(missing)} videos ready", state="complete")
        st.rerun()

    for topic in study.topics:
        with st.container(border=True):
            st.markdown(f"**{topic.icon} {topic.title}**")
            if topic.video_url:
                st.video(topic.video_url)
                if st.button("Delete video", key=f"video_del_{topic.id}"):
                    if not generator.delete(topic.id):
                        st.error("Failed to delete video")
                    st.rerun()
            elif topic.video_generating:
                st.caption("⏳ Rendering…")
            elif st.button("Generate video", key=f"video_gen_{topic.id}"):
                line = st.empty()
                bar = st.progress(0.0)

                def _progress(p, line=line, bar=bar) -> None:
                    line.caption(video_progress_message(p.status, p.progress, p.error))
                    if p.progress is not None:
                        bar.progress(min(1.0, max(0.0, p.progress / 100)))

                try:
                    generator.generate(topic.id, _progress)
                except (ApiError, VideoGenerationError) as e:
                    st.error(str(e))
                else:
                    st.rerun()


# ---------- chat panel ----------


def _render_chat_panel(study: Study, context: ChatContext) -> None:
    chat: ChatReassembler = st.session_state["chat"]
    ws: QuizWorkspace = st.session_state["quiz_ws"]
    api = _api()
    st.markdown(f"#### 💬 Ask about this {'quiz' if context is ChatContext.QUIZ else 'document'}")

    # Reload the server's history whenever this context is opened.
    if st.session_state.get("chat_synced") != (study.id, context.value):
        if not chat.refresh(context, lambda: api.get_chat_history(study.id, context)):
            st.caption("Could not load earlier messages.")
        st.session_state["chat_synced"] = (study.id, context.value)

    for msg in chat.messages[context]:
        with st.chat_message(msg.role):
            st.markdown(msg.content)

    pending: str | None = None
    topic_index = st.session_state.get("chat_topic_index")
    for i, (label, message) in enumerate(quick_actions(context, topic_index, study.topics)):
        if st.button(label, key=f"quick_{context.value}_{i}", use_container_width=True):
            pending = message
    typed = st.chat_input("Ask a question…", key=f"chat_input_{context.value}")
    pending = typed or pending

    if chat.messages[context] and st.button("Clear chat", key=f"chat_clear_{context.value}"):
        try:
            api.clear_chat_history(study.id, context)
        except ApiError as e:
            st.error(str(e))
        else:
            chat.clear(context)
            st.rerun()

    if not pending or not pending.strip():
        return
    session = ws.session
    question_ctx = quiz_question_context(session.current_question, session.current_selection, session.current_answered)
    payload = chat_payload(context, pending, question_ctx)
    with st.chat_message("user"):
        st.markdown(pending)
    with st.chat_message("assistant"):
        placeholder = st.empty()
        chat.on_update = lambda _ctx, msgs: placeholder.markdown(msgs[-1].content or "…")
        try:
            chat.send(context, pending, lambda: api.stream_chat(study.id, payload))
        except ChatBusyError as e:
            st.warning(str(e))
        finally:
            chat.on_update = None
    st.rerun()


# ---------- study page ----------


def _render_study_page(study: Study) -> None:
    st.title(study.title or "Untitled study")
    rec = st.session_state.get("server_recommendation")
    if isinstance(rec, dict) and rec.get("suggested"):
        st.caption(f"Suggested quiz length: {rec.get('suggested')} questions")

    tab = st.radio("View", [TAB_DOCUMENT, TAB_QUIZ, TAB_VIDEO], horizontal=True, label_visibility="collapsed")
    main_col, chat_col = st.columns([3, 2])
    with main_col:
        if tab == TAB_DOCUMENT:
            if study.topics:
                st.session_state["chat_topic_index"] = st.selectbox(
                    "Current unit",
                    options=list(range(len(study.topics))),
                    format_func=lambda i: f"Unit {i + 1}: {study.topics[i].title}",
                )
            _render_document_tab(study)
        elif tab == TAB_QUIZ:
            _render_quiz_tab(study)
        else:
            _render_video_tab(study)
    with chat_col:
        _render_chat_panel(study, ChatContext.from_tab("quiz" if tab == TAB_QUIZ else "document"))


def main() -> None:
    st.set_page_config(page_title=PAGE_TITLE, page_icon=PAGE_ICON, layout="wide")
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    _ensure_migrations_once()
    if not st.session_state.get("user"):
        _render_login()
        return
    _render_sidebar()
    study = _study()
    if study is None:
        st.title(f"{PAGE_ICON} {PAGE_TITLE}")
        st.info("Pick a study from the sidebar or create a new one.")
        return
    _render_study_page(study)


if __name__ == "__main__":
    main()
