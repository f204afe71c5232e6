from fastapi import FastAPI, Request, HTTPException, BackgroundTasks
from fastapi.responses import HTMLResponse, RedirectResponse, JSONResponse
from fastapi.templating import Jinja2Templates
import uvicorn
import logging
import os

import config
from data.test_data import CAMBRIDGE_TESTS, get_test
from scoring import group_size, is_group_key, question_slots
from session import PracticeSession, SessionStatus, SessionStateError, SessionStore

logger = logging.getLogger(__name__)

app = FastAPI(title="IELTS Practice Tests")

# Templates
templates = Jinja2Templates(directory=os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates"))

# Live test sessions, keyed by the test_session cookie
sessions = SessionStore(max_age=config.SESSION_COOKIE_MAX_AGE)


class NoSessionError(Exception):
    pass


# Initialize database on startup
@app.on_event("startup")
async def startup():
    if not config.SAVE_TEST_SCORES:
        logger.info("Score saving disabled - running without database")
        return
    from database import init_db
    try:
        init_db()
    except Exception:
        logger.exception("Database initialization error")
        logger.warning("Running without database - scores will not be saved")


@app.exception_handler(NoSessionError)
async def no_session_handler(request: Request, exc: NoSessionError):
    return JSONResponse({"error": str(exc) or "No session"}, status_code=400)


@app.exception_handler(SessionStateError)
async def session_state_handler(request: Request, exc: SessionStateError):
    return JSONResponse({"error": str(exc)}, status_code=409)


def save_score_safely(record):
    """Background persistence: failures are logged, the shown result is unaffected"""
    try:
        from database import save_test_score
        save_test_score(record)
        logger.info("Test score saved successfully")
    except Exception:
        logger.exception("Failed to save test score for %s %s test %s",
                         record.book, record.module, record.test_number)


def schedule_save(background_tasks: BackgroundTasks, session):
    """Queue the score of a graded session, once per submission"""
    if not session.claim_save():
        return
    if config.SAVE_TEST_SCORES:
        background_tasks.add_task(save_score_safely, session.to_score_record())


def find_test(book: str, module: str, test_number: int):
    test = get_test(book, module, test_number)
    if test is None:
        raise HTTPException(status_code=404, detail="Test not found")
    return test


def current_session(request: Request, test):
    """Session from the cookie; auto-submits it if its time has run out"""
    session_id = request.cookies.get("test_session")
    session = sessions.get(session_id) if session_id else None
    if session is None:
        raise NoSessionError("No session")
    if not session.belongs_to(test):
        raise NoSessionError("Session belongs to another test")

    if session.check_timer():
        logger.info("Session %s auto-submitted on timer expiry", session.session_id)
    return session


def open_session(request: Request, test, background_tasks: BackgroundTasks):
    """
    The browser's open attempt at this test, or None.

    A session for another test, or one already submitted, is saved if
    needed and dropped; one browser holds one open attempt.
    """
    session_id = request.cookies.get("test_session")
    session = sessions.get(session_id) if session_id else None
    if session is None:
        return None

    session.check_timer()
    schedule_save(background_tasks, session)
    if not session.belongs_to(test) or session.status == SessionStatus.SUBMITTED:
        sessions.discard(session.session_id)
        return None
    return session


def wants_html(request: Request):
    """Form posts from the pages ask for HTML; script callers get JSON"""
    return "text/html" in request.headers.get("accept", "")


def test_url(test):
    return f"/cambridge/{test['book']}/{test['module']}/{test['test_number']}"


def submission_payload(session):
    result = session.result
    return {
        "success": True,
        "score": result.raw_correct_count,
        "total": result.total_questions,
        "percentage": result.percentage,
        "band_score": result.band_score,
        "time_taken": session.time_taken,
        "auto_submitted": session.auto_submitted,
        "review": session.review()
    }


def test_summary(test):
    return {
        "book": test["book"],
        "module": test["module"],
        "test_number": test["test_number"],
        "title": test["title"],
        "time_limit": test["time_limit"],
        "total_questions": question_slots(test["answers"]),
        "url": test_url(test)
    }


# ===== PUBLIC ROUTES =====

@app.get("/", response_class=HTMLResponse)
async def home(request: Request):
    """Test catalog page"""
    return templates.TemplateResponse(request, "index.html", {
        "tests": [test_summary(test) for test in CAMBRIDGE_TESTS]
    })


@app.get("/tests")
async def list_tests():
    """Test catalog"""
    return {"tests": [test_summary(test) for test in CAMBRIDGE_TESTS]}


# ===== TEST ROUTES =====

@app.get("/cambridge/{book}/{module}/{test_number}", response_class=HTMLResponse)
async def test_page(request: Request, book: str, module: str, test_number: int,
                    background_tasks: BackgroundTasks):
    """Test page - shows the open session, if any; a session is only created on start"""
    test = find_test(book, module, test_number)
    session = open_session(request, test, background_tasks)

    if config.SAVE_TEST_SCORES:
        try:
            from database import record_test_view
            record_test_view(book, module, test_number)
        except Exception as e:
            logger.warning("Could not record test view: %s", e)

    groups = {key: group_size(key, canonical)
              for key, canonical in test["answers"].items() if is_group_key(key, canonical)}

    response = templates.TemplateResponse(request, "test.html", {
        "test": test,
        "groups": groups,
        "session": (session or PracticeSession(test)).to_dict()
    })
    if session is not None:
        response.set_cookie(key="test_session", value=session.session_id, max_age=config.SESSION_COOKIE_MAX_AGE)
    return response


@app.get("/cambridge/{book}/{module}/{test_number}/state")
async def session_state(request: Request, book: str, module: str, test_number: int,
                        background_tasks: BackgroundTasks):
    """Current session state"""
    test = find_test(book, module, test_number)
    session = current_session(request, test)
    schedule_save(background_tasks, session)
    return session.to_dict()


@app.post("/cambridge/{book}/{module}/{test_number}/start")
async def start_test(request: Request, book: str, module: str, test_number: int,
                     background_tasks: BackgroundTasks):
    """Start the countdown, opening a session for this test if the browser has none"""
    test = find_test(book, module, test_number)
    session = open_session(request, test, background_tasks)
    if session is None:
        for stale in sessions.prune():
            stale.check_timer()
            schedule_save(background_tasks, stale)
        session = sessions.create(test, user_id=request.cookies.get("user_id"))
    session.start()

    if wants_html(request):
        response = RedirectResponse(url=test_url(test), status_code=303)
    else:
        response = JSONResponse({"success": True, "time_remaining": session.time_remaining(session.started_at)})
    response.set_cookie(key="test_session", value=session.session_id, max_age=config.SESSION_COOKIE_MAX_AGE)
    return response


@app.post("/cambridge/{book}/{module}/{test_number}/answer")
async def answer_question(request: Request, book: str, module: str, test_number: int,
                          background_tasks: BackgroundTasks):
    """Save one answer; for multi-select questions, toggle one option"""
    test = find_test(book, module, test_number)
    session = current_session(request, test)
    schedule_save(background_tasks, session)

    form = await request.form()
    question = form.get("question", "")

    try:
        if form.get("option") is not None:
            selected = session.toggle_option(question, form.get("option"))
            return {"success": True, "question": question, "selected": selected}
        session.set_answer(question, form.get("value", ""))
    except KeyError:
        return JSONResponse({"error": f"Unknown question: {question}"}, status_code=400)
    except SessionStateError as e:
        # returned here so a save queued above still runs
        return JSONResponse({"error": str(e)}, status_code=409)

    return {"success": True, "question": question, "value": session.answers.get(question, "")}


@app.post("/cambridge/{book}/{module}/{test_number}/submit")
async def submit_test(request: Request, book: str, module: str, test_number: int,
                      background_tasks: BackgroundTasks):
    """Grade the test; the result is returned before the score is saved"""
    test = find_test(book, module, test_number)
    session = current_session(request, test)

    if session.status == SessionStatus.IN_PROGRESS:
        form = await request.form()
        # the page posts every question; no checkbox ticked means no options
        full_form = "full_form" in form
        for key, canonical in test["answers"].items():
            field = f"q_{key}"
            group = is_group_key(key, canonical)
            if field not in form:
                if group and full_form:
                    session.set_selection(key, [])
                continue
            if group:
                session.set_selection(key, form.getlist(field))
            else:
                session.set_answer(key, form.get(field))

    session.submit()
    schedule_save(background_tasks, session)

    if wants_html(request):
        return RedirectResponse(url=f"{test_url(test)}/results", status_code=303)
    return submission_payload(session)


@app.post("/cambridge/{book}/{module}/{test_number}/reset")
async def reset_test(request: Request, book: str, module: str, test_number: int,
                     background_tasks: BackgroundTasks):
    """Discard answers and go back to the start screen"""
    test = find_test(book, module, test_number)
    session = current_session(request, test)
    schedule_save(background_tasks, session)
    session.reset()
    if wants_html(request):
        return RedirectResponse(url=test_url(test), status_code=303)
    return {"success": True, "status": session.status.value}


@app.get("/cambridge/{book}/{module}/{test_number}/results", response_class=HTMLResponse)
async def results_page(request: Request, book: str, module: str, test_number: int,
                       background_tasks: BackgroundTasks):
    """Answer review page"""
    test = find_test(book, module, test_number)
    try:
        session = current_session(request, test)
    except NoSessionError:
        return RedirectResponse(url=test_url(test), status_code=302)

    if session.status != SessionStatus.SUBMITTED:
        return RedirectResponse(url=test_url(test), status_code=302)

    schedule_save(background_tasks, session)
    return templates.TemplateResponse(request, "results.html", {
        "test": test,
        "result": session.result,
        "time_taken": session.time_taken,
        "auto_submitted": session.auto_submitted,
        "review": session.review()
    })


@app.get("/cambridge/{book}/{module}/{test_number}/statistics")
async def test_statistics(request: Request, book: str, module: str, test_number: int):
    """View and attempt counts for a test"""
    find_test(book, module, test_number)
    if not config.SAVE_TEST_SCORES:
        return {"total_views": 0, "total_attempts": 0, "user": None}
    try:
        from database import get_test_statistics
        return get_test_statistics(book, module, test_number, user_id=request.cookies.get("user_id"))
    except Exception as e:
        logger.warning("Statistics unavailable: %s", e)
        return {"total_views": 0, "total_attempts": 0, "user": None}


@app.get("/cambridge/{book}/{module}/{test_number}/history")
async def test_history(request: Request, book: str, module: str, test_number: int):
    """The current user's previous attempts at a test"""
    find_test(book, module, test_number)
    empty = {"test_history": [], "best_score": None, "total_attempts": 0}

    user_id = request.cookies.get("user_id")
    if not user_id or not config.SAVE_TEST_SCORES:
        return empty

    try:
        from database import get_user_test_history
        return get_user_test_history(book, module, test_number, user_id)
    except Exception as e:
        logger.warning("History unavailable: %s", e)
        return empty


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "IELTS Practice Tests", "active_sessions": len(sessions)}


if __name__ == "__main__":
    uvicorn.run("app:app", host="0.0.0.0", port=8000, reload=True)
