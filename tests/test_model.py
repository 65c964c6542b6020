"""Tests for generated models."""

import asyncio
import uuid

import pytest

from dakota import Dakota
from dakota.errors import InvalidArgument, TypeValidationError
from dakota.model import Model, ModelQuery, default_table_name
from dakota.recipes import callbacks

from conftest import ADDRESS, FakeExecutor, user_definition

USER_ID = uuid.UUID("9b7d8f2e-3a1c-4f6e-8d2b-1c0e5a7b9d3f")
KEY = {"id": USER_ID, "name": "Dakota", "loc": "SF"}
WHERE_KEY = "WHERE id = ? AND loc = ? AND name = ?"


def select_rows(rows):
    def respond(query, params):
        if query.startswith("SELECT"):
            return rows
        return []

    return respond


def make_client(executor=None, **options):
    options.setdefault("keyspace", {"name": "dakota_test"})
    return Dakota(executor or FakeExecutor(), options, {"address": ADDRESS})


@pytest.fixture
def client(executor):
    return make_client(executor)


@pytest.fixture
def User(client):
    return client.model("User", user_definition())


def run(coro):
    return asyncio.run(coro)


class TestModelClass:
    """Tests for model class generation."""

    def test_default_table_name(self):
        """Test model names are pluralized and snake_cased."""
        assert default_table_name("User") == "users"
        assert default_table_name("UserEvent") == "user_events"
        assert default_table_name("Stats") == "stats"

    def test_model_attributes(self, User):
        """Test the generated class carries its schema and table."""
        assert issubclass(User, Model)
        assert User.model_name == "User"
        assert User.__name__ == "User"
        assert User._table.name == "users"
        assert User._table.keyspace == "dakota_test"

    def test_column_properties(self, User):
        """Test every column is a property."""
        for name in ("id", "name", "desc", "nestedTuple", "thngs"):
            assert isinstance(getattr(User, name), property)

    def test_helpers(self, User):
        """Test typed helpers are named after the column or its alias."""
        for helper in (
            "append_thing", "prepend_thing", "remove_thing", "inject_thing",
            "add_projs", "remove_projs",
            "inject_hash", "remove_hash",
            "append_addresses",
        ):
            assert callable(getattr(User, helper)), helper
        assert not hasattr(User, "append_thngs")
        assert not hasattr(User, "append_address")
        assert not hasattr(User, "append_tuples")

    def test_counter_helpers(self, client):
        """Test counters get increment and decrement helpers."""
        Stat = client.model("Stat", {"columns": {"id": "uuid", "views": "counter"}, "key": "id"})
        assert callable(Stat.increment_views)
        assert callable(Stat.decrement_views)

    def test_methods_and_static_methods(self, client):
        """Test instance and static methods are attached."""
        User = client.model("User", user_definition(
            methods={"greet": lambda self: f"Hello {self.name}"},
            static_methods={"kind": lambda: "person"},
        ))
        assert User.new({"name": "Dakota"}).greet() == "Hello Dakota"
        assert User.kind() == "person"

    @pytest.mark.parametrize("extra", [
        {"methods": {"save": lambda self: None}},
        {"methods": {"name": lambda self: None}},
        {"methods": {"append_thing": lambda self: None}},
        {"methods": {"hello": lambda self: None}, "static_methods": {"hello": lambda: None}},
        {"methods": {"_secret": lambda self: None}},
    ])
    def test_name_collisions(self, client, extra):
        """Test colliding attribute names are rejected."""
        with pytest.raises(InvalidArgument, match="collides"):
            client.model("User", user_definition(**extra))

    def test_duplicate_model(self, client, User):
        """Test a model name can be defined once."""
        with pytest.raises(InvalidArgument):
            client.model("User", user_definition())


class TestValues:
    """Tests for reading and writing values."""

    def test_get_and_set(self, User):
        """Test property access."""
        user = User.new({"name": "Dakota"})
        user.age = 5
        assert user.name == "Dakota"
        assert user.age == 5
        assert user.get("age") == 5

    def test_setter_and_getter(self, User):
        """Test column set and get transforms."""
        user = User.new({"exclamation": "hi"})
        assert user._values["exclamation"] == "hi!"
        assert user.exclamation == "HI!"

    def test_validation(self, User):
        """Test values are checked against their types."""
        user = User.new()
        with pytest.raises(TypeValidationError):
            user.age = "old"
        with pytest.raises(TypeValidationError):
            user.append_thing(5)
        with pytest.raises(TypeValidationError):
            user.address = {"zip": "94110"}

    def test_unknown_column(self, User):
        """Test undeclared columns."""
        with pytest.raises(InvalidArgument):
            User.new({"nope": 1})

    def test_collection_operations_update_local_value(self, User):
        """Test local values follow collection operations."""
        user = User.new({"thngs": ["a"]})
        user.append_thing("b").prepend_thing("z").inject_thing(1, "A")
        assert user.thngs == ["z", "A", "b"]
        tid = uuid.uuid1()
        user.add_projs(tid)
        assert user.projs == {tid}
        user.inject_hash("home", "10.0.0.1")
        user.add("hash", {"work": "10.0.0.2"})
        user.remove_hash("home")
        assert user.hash == {"work": "10.0.0.2"}

    def test_wrong_collection_operation(self, User):
        """Test operations that do not fit the column type."""
        user = User.new()
        with pytest.raises(InvalidArgument, match="frozen"):
            user.append("address", {"street": "Main"})
        with pytest.raises(InvalidArgument):
            user.append("projs", uuid.uuid1())
        with pytest.raises(InvalidArgument):
            user.add("hash", "10.0.0.1")
        with pytest.raises(InvalidArgument):
            user.increment("age")

    def test_inject_out_of_range(self, User):
        """Test injecting past the end of a known list."""
        user = User.new({"thngs": ["a"]})
        with pytest.raises(InvalidArgument):
            user.inject_thing(3, "b")


class TestSave:
    """Tests for saving instances."""

    def test_insert_then_update(self, User, executor):
        """Test a new instance inserts and a saved one updates its changes."""
        user = User.new({**KEY, "age": 5})
        run(user.save())
        assert executor.queries == [
            "INSERT INTO dakota_test.users (id, loc, name, age) VALUES (?, ?, ?, ?)"
        ]
        assert executor.calls[0][1] == [USER_ID, "SF", "Dakota", 5]
        assert not user.is_new
        assert user.changes() == {}

        user.append_thing("dog")
        user.remove_thing("dog")
        run(user.save())
        assert executor.queries[1] == (
            f"UPDATE dakota_test.users SET thngs = thngs + ?, thngs = thngs - ? {WHERE_KEY}"
        )
        assert executor.calls[1][1] == [["dog"], ["dog"], USER_ID, "SF", "Dakota"]
        assert user.thngs == []

    def test_nothing_to_save(self, User, executor):
        """Test saving an unchanged saved instance issues nothing."""
        user = User.new(KEY)
        run(user.save())
        run(user.save())
        assert len(executor.calls) == 1

    def test_key_cannot_change_after_save(self, User):
        """Test key columns are fixed once saved."""
        user = User.new(KEY)
        run(user.save())
        user.loc = "SF"
        with pytest.raises(InvalidArgument, match="key column"):
            user.loc = "NY"

    def test_directives(self, User, executor):
        """Test TTL and IF NOT EXISTS apply to one save only."""
        user = User.new(KEY)
        run(user.ttl(60).if_not_exists().save())
        assert executor.queries[0].endswith("VALUES (?, ?, ?) IF NOT EXISTS USING TTL ?")
        assert executor.calls[0][1][-1] == 60

        user.bio = "hi"
        run(user.if_({"bio": None}).save())
        assert executor.queries[1] == f"UPDATE dakota_test.users SET bio = ? {WHERE_KEY} IF bio = ?"

        user.bio = "bye"
        run(user.save())
        assert executor.queries[2] == f"UPDATE dakota_test.users SET bio = ? {WHERE_KEY}"

    def test_insert_rejects_update_conditions(self, User, executor):
        """Test IF EXISTS and IF conditions on a new instance are refused."""
        user = User.new(KEY)
        with pytest.raises(InvalidArgument, match="IF EXISTS"):
            run(user.if_exists().save())
        with pytest.raises(InvalidArgument):
            run(user.if_({"bio": None}).save())
        assert executor.calls == []
        run(user.save())
        assert executor.queries[0].startswith("INSERT INTO dakota_test.users")

    def test_set_add_remove_add(self, User, executor):
        """Test a re-added set element is saved as an addition."""
        tid = uuid.uuid1()
        user = User.upsert(KEY)
        user.add_projs(tid)
        user.remove_projs(tid)
        user.add_projs(tid)
        run(user.save())
        assert executor.queries == [f"UPDATE dakota_test.users SET projs = projs + ? {WHERE_KEY}"]
        assert executor.calls[0][1][0] == {tid}

    def test_upsert(self, User, executor):
        """Test a blind update without a read."""
        run(User.upsert({**KEY, "bio": "hi"}).save())
        assert executor.queries == [f"UPDATE dakota_test.users SET bio = ? {WHERE_KEY}"]
        assert executor.calls[0][1] == ["hi", USER_ID, "SF", "Dakota"]

    def test_blind_list_injection(self, User, executor):
        """Test a list slot can be assigned on a row that was not read."""
        user = User.upsert(KEY)
        user.inject_thing(2, "x")
        run(user.save())
        assert executor.queries == [f"UPDATE dakota_test.users SET thngs[?] = ? {WHERE_KEY}"]

    def test_counters(self, client, executor):
        """Test counter tables are always written with update."""
        Stat = client.model("Stat", {"columns": {"id": "uuid", "views": "counter"}, "key": "id"})
        stat = Stat.new({"id": USER_ID})
        stat.increment_views(3)
        stat.decrement_views()
        assert stat.views == 2
        run(stat.save())
        assert executor.queries == ["UPDATE dakota_test.stats SET views = views + ? WHERE id = ?"]
        assert executor.calls[0][1] == [2, USER_ID]
        with pytest.raises(InvalidArgument):
            stat.views = 5

    def test_failed_save_clears_changes(self, client, executor):
        """Test pending changes are dropped even when a callback fails."""

        def explode(instance):
            raise RuntimeError("nope")

        Note = client.model("Note", {
            "columns": {"id": "uuid", "body": "text"},
            "key": "id",
            "callbacks": {"before_save": explode},
        })
        note = Note.new({"id": USER_ID, "body": "x"})
        with pytest.raises(RuntimeError):
            run(note.save())
        assert note.changes() == {}
        assert executor.calls == []
        assert note.is_new


class TestCallbacks:
    """Tests for lifecycle callbacks."""

    def make(self, client, events):
        def hook(name):
            def callback(instance):
                events.append(name)

            return callback

        async def before_save(instance):
            events.append("before_save")

        names = [
            "before_validate", "after_validate", "before_create",
            "after_create", "after_save", "before_delete", "after_delete",
        ]
        definition = {
            "columns": {"id": "uuid", "ctime": "timestamp", "body": "text"},
            "key": "id",
            "callbacks": {name: hook(name) for name in names},
        }
        definition["callbacks"]["before_save"] = before_save
        definition["callbacks"]["after_new"] = [
            callbacks.set_uuid("id"),
            callbacks.set_timestamp_to_now("ctime"),
        ]
        return client.model("Note", definition)

    def test_order(self, client):
        """Test callback order for create, update and delete."""
        events = []
        Note = self.make(client, events)
        note = Note.new({"body": "x"})
        assert isinstance(note.id, uuid.UUID)
        assert note.ctime is not None

        run(note.save())
        assert events == [
            "before_validate", "after_validate", "before_save",
            "before_create", "after_create", "after_save",
        ]

        events.clear()
        note.body = "y"
        run(note.save())
        assert events == ["before_validate", "after_validate", "before_save", "after_save"]

        events.clear()
        run(note.delete())
        assert events == ["before_delete", "after_delete"]

    def test_async_after_new(self, client):
        """Test after_new callbacks must be synchronous."""

        async def after_new(instance):
            pass

        Note = client.model("Note", {
            "columns": {"id": "uuid"},
            "key": "id",
            "callbacks": {"after_new": after_new},
        })
        with pytest.raises(InvalidArgument, match="asynchronous"):
            Note.new()

    def test_create(self, client, executor):
        """Test create builds and saves in one call."""
        Note = self.make(client, [])
        note = run(Note.create({"body": "x"}))
        assert not note.is_new
        assert executor.queries[0].startswith("INSERT INTO dakota_test.notes (id, ctime, body)")


class TestReads:
    """Tests for finding rows."""

    def test_find(self, User):
        """Test rows become saved instances with converted values."""
        tid = uuid.uuid1()
        User._client.executor.responder = select_rows([
            {**KEY, "projs": [tid], "address": {"street": "Main", "city": "SF", "zip": 94110}},
        ])
        (user,) = run(User.find(id=USER_ID, name="Dakota"))
        assert not user.is_new
        assert user.projs == {tid}
        assert user.address["zip"] == 94110
        assert User._client.executor.queries[-1].endswith(
            "FROM dakota_test.users WHERE id = ? AND name = ?"
        )

    def test_find_one(self, User, executor):
        """Test find_one limits to a single row."""
        executor.responder = select_rows([KEY])
        user = run(User.find_one(KEY))
        assert user.name == "Dakota"
        assert executor.queries[-1].endswith(f"{WHERE_KEY} LIMIT 1")

        executor.responder = select_rows([])
        assert run(User.first()) is None

    def test_model_query_chain(self, User, executor):
        """Test chained select options."""
        executor.responder = select_rows([KEY])
        users = run(
            User.where(id=USER_ID, name="Dakota").select("id", "name", "loc").order_by("loc", "desc").limit(5).all()
        )
        assert len(users) == 1
        assert executor.queries[-1] == (
            "SELECT id, name, loc FROM dakota_test.users "
            "WHERE id = ? AND name = ? ORDER BY loc DESC LIMIT 5"
        )

    def test_count(self, User, executor):
        """Test counting rows."""
        executor.responder = select_rows([{"count": 3}])
        assert run(User.count(age={"gt": 1})) == 3
        assert executor.queries[-1].startswith("SELECT COUNT(*) FROM dakota_test.users WHERE age > ?")

    def test_stream(self, User, executor):
        """Test streaming instances."""
        executor.responder = select_rows([KEY, {**KEY, "loc": "NY"}])

        async def collect():
            return [user.loc async for user in User.stream(id=USER_ID, name="Dakota")]

        assert run(collect()) == ["SF", "NY"]

    def test_query_delete(self, User, executor):
        """Test deleting the rows of a query."""
        query = User.where(id=USER_ID, name="Dakota")
        assert isinstance(query, ModelQuery)
        run(query.delete())
        assert executor.queries == ["DELETE FROM dakota_test.users WHERE id = ? AND name = ?"]

    def test_instance_delete(self, User, executor):
        """Test deleting one row by its key."""
        user = User.upsert(KEY)
        run(user.timestamp(7).delete())
        assert executor.queries == [f"DELETE FROM dakota_test.users USING TIMESTAMP ? {WHERE_KEY}"]
        assert executor.calls[0][1] == [7, USER_ID, "SF", "Dakota"]

    def test_delete_all(self, User, executor):
        """Test truncation."""
        run(User.delete_all())
        assert executor.queries == ["TRUNCATE dakota_test.users"]
