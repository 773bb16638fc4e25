"""
Shared fixtures.

`fake_db` swaps the Motor client for an in-memory store that understands
the query/update subset the services use (dotted paths, positional `$`,
`$[name]` array filters, upserts, transactions with rollback).
`paystack` routes Paystack calls through httpx.MockTransport.
"""

import copy
import json
import operator
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
import pytest
from bson import ObjectId
from pymongo.errors import CollectionInvalid, WriteError

import app.db.mongo as mongo
import app.services.paystack_service as paystack_module
from app.core.config import settings
from app.models.order import new_order_document
from app.models.user import new_user_document, new_bank_details
from app.services.paystack_service import PaystackService


# ==============================================
# Query matching
# ==============================================

TYPE_NAMES = {
    "objectId": ObjectId,
    "string": str,
    "date": datetime,
    "bool": bool,
    "array": list,
    "object": dict,
    "number": (int, float),
}


def _values(doc, path: str) -> List[Any]:
    """Every value at a dotted path, descending into arrays."""
    current = [doc]
    for part in path.split("."):
        found = []
        for value in current:
            if isinstance(value, dict):
                if part in value:
                    found.append(value[part])
            elif isinstance(value, list):
                if part.isdigit():
                    if int(part) < len(value):
                        found.append(value[int(part)])
                else:
                    found.extend(item[part] for item in value if isinstance(item, dict) and part in item)
        current = found
    return current


def _expand(values: List[Any]) -> List[Any]:
    flat = []
    for value in values:
        flat.append(value)
        if isinstance(value, list):
            flat.extend(value)
    return flat


def _compare(values, arg, op) -> bool:
    for value in _expand(values):
        try:
            if op(value, arg):
                return True
        except TypeError:
            continue
    return False


def _is_operator_dict(condition) -> bool:
    return isinstance(condition, dict) and bool(condition) and all(k.startswith("$") for k in condition)


def _match_condition(values: List[Any], condition) -> bool:
    if _is_operator_dict(condition):
        options = condition.get("$options", "")
        return all(
            _match_operator(values, op, arg, options)
            for op, arg in condition.items()
            if op != "$options"
        )
    if isinstance(condition, re.Pattern):
        return any(isinstance(v, str) and condition.search(v) for v in _expand(values))
    if condition is None and not values:
        return True
    return any(v == condition for v in _expand(values))


def _match_operator(values, op, arg, options) -> bool:
    flat = _expand(values)
    if op == "$eq":
        return _match_condition(values, arg)
    if op == "$ne":
        return not _match_condition(values, arg)
    if op == "$in":
        return any(_match_condition(values, candidate) for candidate in arg)
    if op == "$nin":
        return not any(_match_condition(values, candidate) for candidate in arg)
    if op == "$gt":
        return _compare(values, arg, operator.gt)
    if op == "$gte":
        return _compare(values, arg, operator.ge)
    if op == "$lt":
        return _compare(values, arg, operator.lt)
    if op == "$lte":
        return _compare(values, arg, operator.le)
    if op == "$exists":
        return bool(values) == bool(arg)
    if op == "$not":
        return not _match_condition(values, arg)
    if op == "$type":
        return any(isinstance(v, TYPE_NAMES[arg]) for v in values)
    if op == "$regex":
        pattern = re.compile(arg, re.IGNORECASE if "i" in options else 0)
        return any(isinstance(v, str) and pattern.search(v) for v in flat)
    if op == "$size":
        return any(isinstance(v, list) and len(v) == arg for v in values)
    raise NotImplementedError(f"Query operator {op}")


EXPR_OPERATORS = {
    "$eq": operator.eq,
    "$ne": operator.ne,
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
}


def _evaluate(doc, expression):
    """Aggregation expression subset used by collection validators."""
    if isinstance(expression, str) and expression.startswith("$"):
        return (_values(doc, expression[1:]) or [None])[0]
    if not isinstance(expression, dict):
        return expression

    (op, args), = expression.items()
    if op == "$and":
        return all(_evaluate(doc, arg) for arg in args)
    if op == "$or":
        return any(_evaluate(doc, arg) for arg in args)
    if op in EXPR_OPERATORS:
        left, right = (_evaluate(doc, arg) for arg in args)
        try:
            return EXPR_OPERATORS[op](left, right)
        except TypeError:
            return False
    raise NotImplementedError(f"Expression operator {op}")


def matches(doc, query: Optional[Dict[str, Any]]) -> bool:
    for key, condition in (query or {}).items():
        if key == "$expr":
            if not _evaluate(doc, condition):
                return False
        elif key == "$or":
            if not any(matches(doc, q) for q in condition):
                return False
        elif key == "$and":
            if not all(matches(doc, q) for q in condition):
                return False
        elif not _match_condition(_values(doc, key), condition):
            return False
    return True


# ==============================================
# Updates
# ==============================================

def _positional_index(root, array_path: str, query) -> int:
    array = (_values(root, array_path) or [[]])[0]
    prefix = array_path + "."
    conditions = {k[len(prefix):]: v for k, v in (query or {}).items() if k.startswith(prefix)}
    for index, element in enumerate(array):
        if isinstance(element, dict) and matches(element, conditions):
            return index
    raise ValueError(f"The positional operator did not find the match needed for {array_path}")


def _filter_conditions(name: str, array_filters) -> Dict[str, Any]:
    conditions = {}
    for array_filter in array_filters or []:
        for key, value in array_filter.items():
            head, _, rest = key.partition(".")
            if head == name:
                conditions[rest] = value
    return conditions


def _element_matches(element, conditions) -> bool:
    if "" in conditions:
        return _match_condition([element], conditions[""])
    return isinstance(element, dict) and matches(element, conditions)


def _walk(node, original, parts, seen, apply, root, query, array_filters):
    """
    Applies `apply` at every location a path resolves to.

    `original` is the same location in the pre-update snapshot; array
    filters and the positional operator match against it, as MongoDB
    matches against the document before any path is written.
    """
    head, last = parts[0], len(parts) == 1

    if isinstance(node, list):
        source = original if isinstance(original, list) else node
        if head == "$":
            indexes = [_positional_index(root, ".".join(seen), query)]
        elif head.startswith("$["):
            name = head[2:-1]
            if not name:
                indexes = list(range(len(node)))
            else:
                conditions = _filter_conditions(name, array_filters)
                indexes = [i for i, element in enumerate(source) if _element_matches(element, conditions)]
        else:
            indexes = [int(head)]

        for index in indexes:
            if last:
                apply(node, index)
            else:
                child = source[index] if index < len(source) else None
                _walk(node[index], child, parts[1:], seen + [head], apply, root, query, array_filters)
        return

    if last:
        apply(node, head)
        return

    if node.get(head) is None:
        node[head] = [] if parts[1].startswith("$") else {}
    child = original.get(head) if isinstance(original, dict) else None
    _walk(node[head], child, parts[1:], seen + [head], apply, root, query, array_filters)


def _get(container, key, default=None):
    if isinstance(container, list):
        return container[key]
    return container.get(key, default)


def apply_update(doc, update, query=None, array_filters=None, inserting=False):
    snapshot = copy.deepcopy(doc)
    for op, fields in update.items():
        if op == "$setOnInsert" and not inserting:
            continue
        for path, value in fields.items():
            if op in ("$set", "$setOnInsert"):
                def apply(container, key, value=value):
                    container[key] = copy.deepcopy(value)
            elif op == "$inc":
                def apply(container, key, value=value):
                    container[key] = (_get(container, key) or 0) + value
            elif op == "$push":
                def apply(container, key, value=value):
                    items = value["$each"] if isinstance(value, dict) and "$each" in value else [value]
                    container[key] = list(_get(container, key) or []) + copy.deepcopy(items)
            elif op == "$unset":
                def apply(container, key):
                    if isinstance(container, dict):
                        container.pop(key, None)
            else:
                raise NotImplementedError(f"Update operator {op}")
            _walk(doc, snapshot, path.split("."), [], apply, snapshot, query, array_filters)


def _sort_key(value):
    return (value is not None, value)


# ==============================================
# Fake Motor objects
# ==============================================

class Result:
    def __init__(self, matched_count=0, modified_count=0, upserted_id=None, inserted_id=None):
        self.matched_count = matched_count
        self.modified_count = modified_count
        self.upserted_id = upserted_id
        self.inserted_id = inserted_id


class FakeCursor:
    def __init__(self, docs):
        self._docs = list(docs)

    def sort(self, key, direction=None):
        keys = key if isinstance(key, list) else [(key, direction if direction is not None else 1)]
        for field, field_direction in reversed(keys):
            self._docs.sort(
                key=lambda d: _sort_key((_values(d, field) or [None])[0]),
                reverse=field_direction == -1,
            )
        return self

    def skip(self, count):
        self._docs = self._docs[count:]
        return self

    def limit(self, count):
        if count:
            self._docs = self._docs[:count]
        return self

    async def to_list(self, length=None):
        return list(self._docs if length is None else self._docs[:length])

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self._docs:
            yield doc


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs: List[Dict[str, Any]] = []
        self.pipelines: List[List[Dict[str, Any]]] = []
        self.aggregate_results: List[List[Dict[str, Any]]] = []
        self.validator: Optional[Dict[str, Any]] = None

    def _matching(self, query):
        return [doc for doc in self.docs if matches(doc, query)]

    def _validate(self, doc, before=None):
        """Rejects a write the collection validator does not accept."""
        if self.validator is None or matches(doc, self.validator):
            return
        if before is not None:
            doc.clear()
            doc.update(before)
        raise WriteError("Document failed validation", code=121)

    def _apply(self, doc, update, query, array_filters):
        before = copy.deepcopy(doc)
        apply_update(doc, update, query, array_filters)
        self._validate(doc, before)
        return before

    def _upsert(self, query, update, array_filters):
        doc = {}
        for key, value in (query or {}).items():
            if not key.startswith("$") and not _is_operator_dict(value):
                apply_update(doc, {"$set": {key: value}})
        apply_update(doc, update, query, array_filters, inserting=True)
        doc.setdefault("_id", ObjectId())
        self._validate(doc)
        self.docs.append(doc)
        return doc

    async def insert_one(self, document, session=None):
        document.setdefault("_id", ObjectId())
        self._validate(document)
        self.docs.append(copy.deepcopy(document))
        return Result(inserted_id=document["_id"])

    async def find_one(self, query=None, projection=None, session=None, **kwargs):
        found = self._matching(query)
        return copy.deepcopy(found[0]) if found else None

    def find(self, query=None, projection=None, session=None, **kwargs):
        return FakeCursor(copy.deepcopy(self._matching(query)))

    async def count_documents(self, query, session=None, **kwargs):
        return len(self._matching(query))

    async def update_one(self, query, update, upsert=False, array_filters=None, session=None):
        found = self._matching(query)
        if not found:
            if upsert:
                doc = self._upsert(query, update, array_filters)
                return Result(upserted_id=doc["_id"])
            return Result()

        doc = found[0]
        before = self._apply(doc, update, query, array_filters)
        return Result(matched_count=1, modified_count=int(doc != before))

    async def update_many(self, query, update, array_filters=None, session=None):
        modified = 0
        found = self._matching(query)
        for doc in found:
            before = self._apply(doc, update, query, array_filters)
            modified += int(doc != before)
        return Result(matched_count=len(found), modified_count=modified)

    async def find_one_and_update(
        self,
        query,
        update,
        upsert=False,
        return_document=False,
        array_filters=None,
        session=None,
        **kwargs,
    ):
        found = self._matching(query)
        if not found:
            if not upsert:
                return None
            doc = self._upsert(query, update, array_filters)
            return copy.deepcopy(doc) if return_document else None

        doc = found[0]
        before = self._apply(doc, update, query, array_filters)
        return copy.deepcopy(doc if return_document else before)

    async def delete_one(self, query, session=None):
        found = self._matching(query)
        if found:
            self.docs.remove(found[0])
        return Result(matched_count=len(found[:1]), modified_count=len(found[:1]))

    def aggregate(self, pipeline, session=None, **kwargs):
        """Records the pipeline and returns the next queued result set."""
        self.pipelines.append(pipeline)
        results = self.aggregate_results.pop(0) if self.aggregate_results else []
        return FakeCursor(copy.deepcopy(results))

    async def create_index(self, keys, **kwargs):
        return kwargs.get("name") or str(keys)

    async def index_information(self):
        return {"_id_": {"key": [("_id", 1)]}}


class FakeDatabase:
    def __init__(self):
        self.collections: Dict[str, FakeCollection] = {}

    def __getitem__(self, name) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    def __getattr__(self, name) -> FakeCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    async def create_collection(self, name, validator=None, **kwargs):
        if name in self.collections:
            raise CollectionInvalid(f"collection {name} already exists")
        self[name].validator = validator
        return self[name]

    async def command(self, name, value=None, validator=None, **kwargs):
        if name != "collMod":
            raise NotImplementedError(f"Command {name}")
        self[value].validator = validator
        return {"ok": 1}

    def snapshot(self):
        return {name: copy.deepcopy(c.docs) for name, c in self.collections.items()}

    def restore(self, snapshot):
        for name, collection in self.collections.items():
            collection.docs = copy.deepcopy(snapshot.get(name, []))


class FakeTransaction:
    def __init__(self, session):
        self._session = session

    async def __aenter__(self):
        self._session._snapshot = self._session.client.database.snapshot()
        self._session.in_transaction = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._session.in_transaction:
            if exc_type is None:
                self._session.in_transaction = False
                self._session.client.commits += 1
            else:
                await self._session.abort_transaction()
        return False


class FakeSession:
    def __init__(self, client):
        self.client = client
        self.in_transaction = False
        self._snapshot = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self.in_transaction:
            await self.abort_transaction()
        return False

    def start_transaction(self):
        return FakeTransaction(self)

    async def abort_transaction(self):
        self.client.database.restore(self._snapshot)
        self.in_transaction = False
        self.client.aborts += 1


class FakeAdmin:
    async def command(self, name, *args, **kwargs):
        return {"ok": 1}


class FakeClient:
    def __init__(self):
        self.database = FakeDatabase()
        self.admin = FakeAdmin()
        self.commits = 0
        self.aborts = 0

    async def start_session(self):
        return FakeSession(self)

    def close(self):
        pass


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def fake_client(monkeypatch):
    client = FakeClient()
    monkeypatch.setattr(mongo, "_client", client)
    monkeypatch.setattr(mongo, "_database", client.database)
    return client


@pytest.fixture
def fake_db(fake_client):
    return fake_client.database


# ==============================================
# Paystack
# ==============================================

PAYSTACK_SECRET = "sk_test_secret"


class PaystackStub:
    """
    Canned Paystack responses keyed by (method, path).

    A route value is either a JSON body (served with HTTP 200) or a
    (status_code, body) tuple. Unrouted calls get a 404.
    """

    def __init__(self):
        self.routes: Dict[tuple, Any] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method, path, body, status_code=200):
        self.routes[(method, path)] = (status_code, body)

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def body(self, request: httpx.Request):
        return json.loads(request.content) if request.content else {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"status": False, "message": "Not found"})
        status_code, body = route
        return httpx.Response(status_code, json=body)


@pytest.fixture
def paystack(monkeypatch):
    stub = PaystackStub()
    service = PaystackService(
        secret_key=PAYSTACK_SECRET,
        base_url="https://api.paystack.test",
        transport=httpx.MockTransport(stub.handler),
    )
    monkeypatch.setattr(paystack_module, "_paystack_service", service)
    monkeypatch.setattr(settings, "PAYSTACK_SECRET_KEY", PAYSTACK_SECRET)
    return stub


# ==============================================
# Seed data
# ==============================================

class Seed:
    def __init__(self, db: FakeDatabase):
        self.db = db

    async def user(self, name="Ada Obi", email=None, referred_by=None, **fields):
        doc = new_user_document(name, email or f"{ObjectId()}@example.com", referred_by=referred_by)
        program = fields.pop("referral_program", None)
        if program:
            doc["referral_program"].update(program)
        doc.update(fields)
        await self.db.users.insert_one(doc)
        return doc

    async def bank_user(self, **fields):
        program = fields.pop("referral_program", {})
        program.setdefault("bank_details", new_bank_details("ADA OBI", "0123456789", "058"))
        return await self.user(referral_program=program, **fields)

    async def product(self, name="Ankara Dress", price=10000, stock=10, purchase_price=6000, **fields):
        doc = {
            "name": name,
            "price": price,
            "discounted_price": fields.pop("discounted_price", None),
            "purchase_price": purchase_price,
            "stock": stock,
            "images": [],
        }
        doc.update(fields)
        await self.db.products.insert_one(doc)
        return doc

    async def address(self, user_id, state="Lagos", city="Ikeja"):
        doc = {
            "user": user_id,
            "full_name": "Ada Obi",
            "phone": "08012345678",
            "address": "12 Allen Avenue",
            "city": city,
            "state": state,
            "postal_code": "100001",
            "country": "Nigeria",
        }
        await self.db.addresses.insert_one(doc)
        return doc

    async def order(self, user_id, items, shipping_price=1500, **fields):
        order_items = [
            {"product": product["_id"], "name": product["name"], "quantity": quantity, "discounted_price": price}
            for product, quantity, price in items
        ]
        doc = new_order_document(
            user_id,
            order_items,
            {"full_name": "Ada Obi", "city": "Ikeja", "state": "Lagos"},
            shipping_price=shipping_price,
        )
        doc.update(fields)
        await self.db.orders.insert_one(doc)
        return doc

    async def settings(self, min_payout_amount=5000, referral_percentage=1.5):
        doc = {
            "min_payout_amount": min_payout_amount,
            "referral_percentage": referral_percentage,
            "updated_at": datetime.utcnow(),
        }
        await self.db.referral_payout_settings.insert_one(doc)
        return doc

    async def reload_user(self, user_id):
        return await self.db.users.find_one({"_id": user_id})


@pytest.fixture
def seed(fake_db):
    return Seed(fake_db)
