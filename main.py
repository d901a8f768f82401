import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.errors import PyMongoError

import database
from app_logger import get_logger
from local_cache import LocalCache
from reports import active_restrictions, student_history, violation_watchlist
from schemas import (
    DutyAssignmentIn,
    FitnessRecord,
    FullRestore,
    LoginRequest,
    NewDisciplineRecord,
    Restriction,
    SessionInfo,
    Student,
    Token,
)
from sync import MongoStore
from tracker import NotSignedIn, Tracker, today

log = get_logger("api")

# Environment & Security setup
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 12))
ADMIN_PASSCODE_HASH = os.getenv("ADMIN_PASSCODE_HASH")
LOCAL_STORE_DIR = os.getenv("LOCAL_STORE_DIR", ".tracker-store")
WATCHLIST_THRESHOLD = int(os.getenv("WATCHLIST_THRESHOLD", 3))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def build_tracker() -> Tracker:
    store = MongoStore(database.db) if database.is_cloud_active() else None
    return Tracker(LocalCache(LOCAL_STORE_DIR), store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    tracker = build_tracker()
    app.state.tracker = tracker
    log.info("Tracker ready (%s)", "Live Cloud" if tracker.cloud_active else "Local Storage")
    tracker.start_sync()
    try:
        yield
    finally:
        # Joining the subscription threads blocks, keep it off the event loop
        await run_in_threadpool(tracker.stop_sync)


app = FastAPI(title="School Discipline Tracker API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PyMongoError)
async def remote_write_failed(request: Request, exc: PyMongoError):
    log.error("Remote write failed on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": f"Remote store write failed: {str(exc)[:120]}"})


# ----------------------- Utility Functions -----------------------

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def dump_all(items) -> List[dict]:
    return [i.to_doc() for i in items]


# ----------------------- Dependencies -----------------------

def get_tracker(request: Request) -> Tracker:
    return request.app.state.tracker


def get_current_user(token: str = Depends(oauth2_scheme), tracker: Tracker = Depends(get_tracker)) -> str:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user: Optional[str] = payload.get("sub")
        if not user:
            raise HTTPException(status_code=401, detail="Invalid token")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    # Logging out ends the session, which retires every token issued for it
    if tracker.session.user != user:
        raise HTTPException(status_code=401, detail="Session ended")
    return user


def require_admin(user: str = Depends(get_current_user), tracker: Tracker = Depends(get_tracker)) -> str:
    if not tracker.session.is_admin:
        raise HTTPException(status_code=403, detail="Not authorized")
    return user


# ----------------------- Health -----------------------
@app.get("/")
def read_root():
    return {"message": "School Discipline Tracker API running"}


@app.get("/health")
def health():
    return {"ok": True, "time": datetime.now(timezone.utc).isoformat()}


@app.get("/test")
def test_database(tracker: Tracker = Depends(get_tracker)):
    response = {
        "backend": "✅ Running",
        "mode": "Live Cloud" if tracker.cloud_active else "Local Storage",
        "database": "❌ Not Configured",
        "database_url": None,
        "database_name": None,
        "collections": [],
        "local_store": LOCAL_STORE_DIR,
    }
    if tracker.store is not None:
        response["database"] = "✅ Configured"
        try:
            response["collections"] = tracker.store.collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except PyMongoError as e:
            response["database"] = f"⚠️ Configured but Error: {str(e)[:50]}"
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
    return response


# ----------------------- Session Endpoints -----------------------
@app.post("/auth/login", response_model=Token)
def login(req: LoginRequest, tracker: Tracker = Depends(get_tracker)):
    if not req.identifier.strip():
        raise HTTPException(status_code=400, detail="Identifier required")
    is_admin = False
    if req.admin_passcode:
        if not ADMIN_PASSCODE_HASH or not verify_password(req.admin_passcode, ADMIN_PASSCODE_HASH):
            raise HTTPException(status_code=400, detail="Incorrect admin passcode")
        is_admin = True
    tracker.login(req.identifier, is_admin)
    token = create_access_token({"sub": req.identifier, "admin": is_admin})
    return Token(access_token=token, is_admin=is_admin)


@app.post("/auth/logout")
def logout(user: str = Depends(get_current_user), tracker: Tracker = Depends(get_tracker)):
    tracker.logout()
    return {"status": "signed out"}


@app.get("/session")
def session_info(user: str = Depends(get_current_user), tracker: Tracker = Depends(get_tracker)):
    s = tracker.session
    return SessionInfo(user=s.user, is_admin=s.is_admin, cloud_active=s.cloud_active).to_doc()


# ----------------------- Student Roster -----------------------
@app.get("/students")
def list_students(user: str = Depends(get_current_user), tracker: Tracker = Depends(get_tracker)):
    return dump_all(tracker.snapshot("students"))


@app.put("/students")
def import_students(students: List[Student], user: str = Depends(get_current_user),
                    tracker: Tracker = Depends(get_tracker)):
    tracker.import_students(students)
    return {"count": len(students)}


@app.delete("/students")
def clear_students(confirm: bool = False, user: str = Depends(get_current_user),
                   tracker: Tracker = Depends(get_tracker)):
    if not tracker.clear_students(confirm):
        raise HTTPException(status_code=400, detail="Confirm clearing the roster with ?confirm=true")
    return {"status": "cleared"}


# ----------------------- Discipline -----------------------
@app.get("/discipline-records")
def list_discipline_records(student: Optional[str] = None, grade: Optional[str] = None,
                            user: str = Depends(get_current_user), tracker: Tracker = Depends(get_tracker)):
    records = tracker.snapshot("discipline_records")
    if student:
        records = student_history(records, student, grade)
    return dump_all(records)


@app.post("/discipline-records")
def add_discipline_record(payload: NewDisciplineRecord, user: str = Depends(get_current_user),
                          tracker: Tracker = Depends(get_tracker)):
    try:
        record = tracker.add_discipline_record(payload)
    except NotSignedIn:
        raise HTTPException(status_code=401, detail="Not signed in")
    return record.to_doc()


# ----------------------- Restrictions -----------------------
@app.get("/restrictions")
def list_restrictions(user: str = Depends(get_current_user), tracker: Tracker = Depends(get_tracker)):
    return dump_all(tracker.snapshot("restrictions"))


@app.get("/restrictions/active")
def list_active_restrictions(on: Optional[str] = None, user: str = Depends(get_current_user),
                             tracker: Tracker = Depends(get_tracker)):
    return dump_all(active_restrictions(tracker.snapshot("restrictions"), on or today()))


@app.put("/restrictions/{restriction_id}")
def save_restriction(restriction_id: str, payload: Restriction, user: str = Depends(get_current_user),
                     tracker: Tracker = Depends(get_tracker)):
    if payload.id != restriction_id:
        raise HTTPException(status_code=400, detail="Invalid ID")
    tracker.save_restriction(payload)
    return payload.to_doc()


@app.delete("/restrictions/{restriction_id}")
def delete_restriction(restriction_id: str, user: str = Depends(get_current_user),
                       tracker: Tracker = Depends(get_tracker)):
    tracker.delete_restriction(restriction_id)
    return {"status": "deleted"}


@app.get("/watchlist")
def watchlist(flagged_only: bool = False, user: str = Depends(get_current_user),
              tracker: Tracker = Depends(get_tracker)):
    entries = violation_watchlist(
        tracker.snapshot("discipline_records"),
        tracker.snapshot("restrictions"),
        WATCHLIST_THRESHOLD,
        today(),
        flagged_only=flagged_only,
    )
    return dump_all(entries)


# ----------------------- Fitness -----------------------
@app.get("/fitness-records")
def list_fitness_records(user: str = Depends(get_current_user), tracker: Tracker = Depends(get_tracker)):
    return dump_all(tracker.snapshot("fitness_records"))


@app.put("/fitness-records")
def update_fitness_records(records: List[FitnessRecord], user: str = Depends(get_current_user),
                           tracker: Tracker = Depends(get_tracker)):
    tracker.update_fitness_records(records)
    return {"count": len(records)}


# ----------------------- Duty Roster -----------------------
@app.get("/duty-roster")
def list_duty_roster(user: str = Depends(get_current_user), tracker: Tracker = Depends(get_tracker)):
    return dump_all(tracker.snapshot("duty_roster"))


@app.put("/duty-roster")
def update_duty_roster(roster: List[DutyAssignmentIn], user: str = Depends(require_admin),
                       tracker: Tracker = Depends(get_tracker)):
    tracker.update_duty_roster([a.to_assignment() for a in roster])
    return {"count": len(roster)}


# ----------------------- Backup -----------------------
@app.get("/backup")
def backup(user: str = Depends(get_current_user), tracker: Tracker = Depends(get_tracker)):
    return tracker.backup().to_doc()


@app.post("/restore")
def restore(payload: FullRestore, user: str = Depends(get_current_user), tracker: Tracker = Depends(get_tracker)):
    return {"restored": tracker.restore(payload)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
