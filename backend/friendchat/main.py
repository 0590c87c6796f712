import uvicorn
from fastapi import FastAPI, Depends, HTTPException, status, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from sqlalchemy.orm import Session
import socketio

from .config import get_settings
from .database import Base, engine, get_db
from .errors import ChatError, NotFoundError, ValidationError, chat_exception_handler
from .logs import get_logger, setup_logging
from .models import Chat, Credential, User
from .realtime import hub, chat_messages, incoming_requests
from .session import ChatSession, affected_by
from . import auth as _auth_module
from . import directory, friend_requests, friends, messages
from .schemas import (
    UserRead,
    UserCreate,
    UserLookup,
    Token,
    MessageRead,
    MessageCreate,
    FriendRead,
    FriendRequestRead,
    FriendRequestCreate,
    FriendRequestResponse,
)

settings = get_settings()
setup_logging()
logger = get_logger("friendchat.main")


# --- Initialize DB ---
Base.metadata.create_all(bind=engine)

# --- FastAPI + CORS setup ---
app = FastAPI(title="friendchat")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(ChatError, chat_exception_handler)


# --- Auth helpers ---
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

@app.get("/", tags=["root"])
async def read_root():
    return {"message": "Hello, World!"}

@app.get("/health")
async def health():
    return {"status":"ok"}


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
):
    creds_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    uid = _auth_module.decode_access_token(token)
    if not uid:
        raise creds_exc

    user = directory.load_profile(db, uid)
    if not user:
        raise creds_exc
    return user


# --- USER endpoints ---
@app.post("/users/", response_model=UserRead)
def create_user(user: UserCreate, db: Session = Depends(get_db)):
    if not user.password:
        raise ValidationError("Fill all required fields.", code="MissingFields")
    uid = _auth_module.new_uid()
    return directory.register(
        db,
        user.username,
        uid,
        user.email,
        extra=[_auth_module.credential(uid, user.email, user.password)],
    )


@app.post("/token", response_model=Token)
def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
):
    uid = directory.resolve(db, form_data.username)
    cred = db.get(Credential, uid) if uid else None
    if not cred or not _auth_module.verify_password(form_data.password, cred.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token = _auth_module.create_access_token(data={"sub": uid})
    logger.info("account.signed_in", uid=uid)
    return {"access_token": access_token, "token_type": "bearer"}


@app.get("/users/me", response_model=UserRead)
def read_me(current_user: User = Depends(get_current_user)):
    return current_user


@app.get("/users/search", response_model=UserLookup)
def search_user(
    username: str = Query(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    entry = directory.lookup(db, username)
    if not entry:
        raise NotFoundError("Username not found.", code="HandleNotFound")
    return UserLookup(uid=entry.uid, username=entry.username)


# --- FRIENDS & REQUESTS ---
@app.get("/friends/", response_model=list[FriendRead])
def list_friends(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return friends.list_friends(db, current_user.uid)


@app.post("/friend_requests/", response_model=FriendRequestRead)
async def send_friend_request(
    req: FriendRequestCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    fr = friend_requests.send(db, current_user.uid, current_user.username, req.to_username)
    await hub.publish(incoming_requests(fr.to_uid))
    return fr


@app.get("/friend_requests/", response_model=list[FriendRequestRead])
def list_friend_requests(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return friend_requests.list_incoming(db, current_user.uid)


@app.post("/friend_requests/{request_id}/respond", response_model=FriendRequestRead)
async def respond_friend_request(
    request_id: str,
    resp: FriendRequestResponse,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if resp.action == "accept":
        fr = friend_requests.accept(db, request_id, current_user.uid)
    else:
        fr = friend_requests.reject(db, request_id, current_user.uid)
    await hub.publish(*affected_by(fr))
    return fr


# --- MESSAGES ---
def get_member_chat(chat_id: str, current_user: User, db: Session) -> Chat:
    chat = db.get(Chat, chat_id)
    if not chat or current_user.uid not in chat.members:
        raise NotFoundError("No such chat", code="NoChannel")
    return chat


@app.get("/chats/{chat_id}/messages", response_model=list[MessageRead])
def read_messages(
    chat_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    get_member_chat(chat_id, current_user, db)
    return messages.snapshot(db, chat_id)


@app.post("/chats/{chat_id}/messages", response_model=MessageRead)
async def post_message(
    chat_id: str,
    msg: MessageCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    get_member_chat(chat_id, current_user, db)
    posted = messages.post(db, chat_id, current_user.uid, current_user.username, msg.text)
    await hub.publish(chat_messages(chat_id))
    return posted


# --- SOCKET.IO setup ---
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")
app_sio = socketio.ASGIApp(sio, other_asgi_app=app)

sessions: dict[str, ChatSession] = {}


@sio.event
async def connect(sid, environ, auth_data):
    token = auth_data.get("token") if auth_data else None
    uid = _auth_module.decode_access_token(token) if token else None
    if not uid:
        return False

    async def emit(event, payload):
        await sio.emit(event, payload, to=sid)

    session = ChatSession(uid, hub, emit)
    sessions[sid] = session
    # the client only sees events once the handshake has completed
    sio.start_background_task(session.start)
    return True


@sio.event
async def disconnect(sid, *args):
    session = sessions.pop(sid, None)
    if session is not None:
        await session.end()


@sio.event
async def select_friend(sid, friend_uid: str):
    session = sessions.get(sid)
    if session:
        await session.select_friend(friend_uid)


@sio.event
async def send_message(sid, data):
    session = sessions.get(sid)
    if session:
        await session.send_message((data or {}).get("text", ""))


@sio.on("send_friend_request")
async def on_send_friend_request(sid, data):
    session = sessions.get(sid)
    if session:
        await session.send_friend_request((data or {}).get("to_username", ""))


@sio.event
async def accept_request(sid, request_id: str):
    session = sessions.get(sid)
    if session:
        await session.accept(request_id)


@sio.event
async def reject_request(sid, request_id: str):
    session = sessions.get(sid)
    if session:
        await session.reject(request_id)


if __name__ == "__main__":
    uvicorn.run(app_sio, host="0.0.0.0", port=settings.PORT)
