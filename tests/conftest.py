from __future__ import annotations

from concurrent.futures import Future
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import requests

from flyer_bot.catalog.persister import CatalogPersister
from flyer_bot.config import Settings
from flyer_bot.media.pipeline import FlyerPipeline
from flyer_bot.media.storage import ArtifactStore
from flyer_bot.parser_engine.inference import InferenceClient

SENDER = "5511999999999@c.us"

SCENARIO_RAW = (
    "```json\n"
    '{"supermercado":"Mercado X","validade_promocao":"2024-12-31","produtos":'
    '[{"produto_nome":"Arroz","marca":"MarcaY","preco_float":19.9,'
    '"unidade_padronizada":"kg","valor_padronizado":5,"preco_por_unidade":3.98}]}'
    "\n```"
)


# ---------------------------------------------------------------------------
# Supabase (PostgREST tables + Storage)
# ---------------------------------------------------------------------------

class FakeResponse:
    def __init__(self, data: List[Dict[str, Any]]) -> None:
        self.data = data


class FakeQuery:
    """Just enough of the postgrest builder for the persister."""

    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self.db = db
        self.table = table
        self.op = "select"
        self.filters: Dict[str, Any] = {}
        self.payload: Optional[Dict[str, Any]] = None
        self.on_conflict: Optional[str] = None
        self.ignore_duplicates = False

    def select(self, *columns: str) -> "FakeQuery":
        self.op = "select"
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters[column] = ("eq", value)
        return self

    def is_(self, column: str, value: str) -> "FakeQuery":
        assert value == "null"
        self.filters[column] = ("is", None)
        return self

    def insert(self, data: Dict[str, Any]) -> "FakeQuery":
        self.op = "insert"
        self.payload = dict(data)
        return self

    def upsert(self, data: Dict[str, Any], on_conflict: str = "", ignore_duplicates: bool = False) -> "FakeQuery":
        self.op = "upsert"
        self.payload = dict(data)
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def _matches(self, row: Dict[str, Any]) -> bool:
        for column, (kind, value) in self.filters.items():
            if kind == "is":
                if row.get(column) is not None:
                    return False
            # SQL: `col = NULL` is never true
            elif value is None or row.get(column) != value:
                return False
        return True

    def execute(self) -> FakeResponse:
        subject = self.payload if self.payload is not None else {k: v for k, (_, v) in self.filters.items()}
        self.db.calls.append((self.table, self.op, subject))
        self.db.maybe_fail(self.table, self.op, subject)

        rows = self.db.tables.setdefault(self.table, [])

        if self.op == "select":
            return FakeResponse([{"id": r["id"]} for r in rows if self._matches(r)])

        if self.op == "upsert":
            keys = [c.strip() for c in (self.on_conflict or "").split(",") if c.strip()]
            for row in rows:
                if keys and all(row.get(k) == self.payload.get(k) for k in keys):
                    return FakeResponse([] if self.ignore_duplicates else [row])

        row = dict(self.payload, id=self.db.next_id(self.table))
        rows.append(row)
        return FakeResponse([row])


class FakeBucket:
    def __init__(self, storage: "FakeStorage", name: str) -> None:
        self.storage = storage
        self.name = name

    def upload(self, path: str, file: bytes, file_options: Optional[Dict[str, str]] = None):
        if self.storage.error is not None:
            raise self.storage.error
        self.storage.objects[(self.name, path)] = (file, dict(file_options or {}))
        return SimpleNamespace(path=path, full_path=f"{self.name}/{path}")


class FakeStorage:
    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str], Tuple[bytes, Dict[str, str]]] = {}
        self.error: Optional[Exception] = None

    def from_(self, bucket: str) -> FakeBucket:
        return FakeBucket(self, bucket)


class FakeSupabase:
    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.storage = FakeStorage()
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self._ids: Dict[str, int] = {}
        self._failures: List[Tuple[str, str, Callable[[Dict[str, Any]], bool], Exception]] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def next_id(self, table: str) -> int:
        self._ids[table] = self._ids.get(table, 0) + 1
        return self._ids[table]

    def fail(self, table: str, op: str, when: Callable[[Dict[str, Any]], bool] = lambda _: True,
             error: Optional[Exception] = None) -> None:
        self._failures.append((table, op, when, error or RuntimeError(f"{table} {op} failed")))

    def maybe_fail(self, table: str, op: str, subject: Dict[str, Any]) -> None:
        for f_table, f_op, when, error in self._failures:
            if f_table == table and f_op == op and when(subject):
                raise error

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.get(table, [])


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

class FakeCompletions:
    def __init__(self, reply: Any) -> None:
        self.reply = reply
        self.calls: List[Dict[str, Any]] = []

    def create(self, **kwargs: Any):
        self.calls.append(kwargs)
        if isinstance(self.reply, Exception):
            raise self.reply
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeOpenAI:
    def __init__(self, reply: Any = SCENARIO_RAW) -> None:
        self.chat = SimpleNamespace(completions=FakeCompletions(reply))

    @property
    def calls(self) -> List[Dict[str, Any]]:
        return self.chat.completions.calls


# ---------------------------------------------------------------------------
# WhatsApp gateway / executor
# ---------------------------------------------------------------------------

class FakeTransport:
    def __init__(self, media: bytes = b"\xff\xd8jpeg", mime_type: str = "image/jpeg") -> None:
        self.sent: List[Tuple[str, str, Optional[str]]] = []
        self.downloads: List[str] = []
        self.media = media
        self.mime_type = mime_type
        self.download_error: Optional[Exception] = None

    def send_message(self, chat_id: str, text: str, reply_to: Optional[str] = None) -> bool:
        self.sent.append((chat_id, text, reply_to))
        return True

    def download_media(self, url: str, mime_type: Optional[str] = None):
        self.downloads.append(url)
        if self.download_error is not None:
            raise self.download_error
        return self.media, mime_type or self.mime_type


class ImmediateExecutor:
    """Runs submitted work inline so tests can assert on its effects."""

    def __init__(self) -> None:
        self.results: List[Any] = []

    def submit(self, fn, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            result = fn(*args, **kwargs)
        except Exception as e:  # noqa: BLE001
            future.set_exception(e)
            return future
        self.results.append(result)
        future.set_result(result)
        return future

    def shutdown(self, wait: bool = True) -> None:
        pass


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def openai_client() -> FakeOpenAI:
    return FakeOpenAI()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def settings(tmp_path) -> Settings:
    contacts = tmp_path / "contatos.txt"
    contacts.write_text(f"{SENDER}\n\n5521888888888@c.us\n", encoding="utf-8")
    return Settings(
        openai_api_key="test",
        supabase_url="https://example.supabase.co",
        supabase_key="test",
        contacts_file=str(contacts),
        log_dir=str(tmp_path / "logs"),
        ingest_concurrency=2,
    )


@pytest.fixture
def pipeline(db, openai_client) -> FlyerPipeline:
    inference = InferenceClient(openai_client, "extract the flyer", "gpt-4o-mini")
    return FlyerPipeline(
        inference=inference,
        store=ArtifactStore(db, "encartes"),
        persister=CatalogPersister(db),
        concurrency=2,
    )


@pytest.fixture
def http_error() -> Exception:
    return requests.ConnectionError("gateway down")
