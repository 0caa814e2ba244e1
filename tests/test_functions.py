import sqlite3
import pytest

from sqlite_hooks import ArityMismatchError, ClosedError, Arity, ScalarFunction, AggregateFunction


class Sum:
    def __init__(self):
        self.sum = 0

    def step(self, a):
        self.sum += a

    def finalize(self):
        return self.sum


def test_define_function(db):
    called_with = []
    db.define_function("hello", lambda value: called_with.append(value))
    db.execute("select hello(10)")
    assert called_with == [10]
    assert isinstance(called_with[0], int)


def test_call_func_arg_type(db):
    called_with = None

    def hello(b, c, d):
        nonlocal called_with
        called_with = [b, c, d]

    db.define_function("hello", hello)
    db.execute("select hello(2.2, 'foo', NULL)")
    assert called_with == [2.2, 'foo', None]


def test_define_varargs(db):
    called_with = None

    def hello(*args):
        nonlocal called_with
        called_with = list(args)

    db.define_function("hello", hello)
    db.execute("select hello(2.2, 'foo', NULL)")
    assert called_with == [2.2, 'foo', None]
    db.execute("select hello()")
    assert called_with == []


def test_function_return(db):
    db.define_function("hello", lambda a: 10)
    assert db.execute("select hello('world')")[0] == (10,)


@pytest.mark.parametrize('thing', [10, 2.2, None, "foo"])
def test_function_return_types(db, thing):
    db.define_function("hello", lambda a: thing)
    assert db.execute("select hello('world')")[0] == (thing,)


def test_function_redefinition_in_loop(db):
    for thing in [10, 2.2, None, "foo", b"\x00\x01"]:
        db.define_function("hello", lambda a, thing=thing: thing)
        assert db.execute("select hello('world')")[0] == (thing,)


def test_function_bool_marshals_to_int(db):
    db.define_function("yes", lambda: True)
    assert db.get_first_value("select yes()") == 1


def test_unsupported_return_type_raises_type_error(db):
    db.define_function("bad", lambda: object())
    with pytest.raises(TypeError, match='object'):
        db.execute("select bad()")
    assert db.live_statement_count == 0


def test_define_function_closed(db):
    db.close()
    with pytest.raises(ClosedError):
        db.define_function('foo', lambda: None)


def test_define_function_with_callable_object(db):
    class Greeter:
        def __call__(self, name):
            return f"hello {name}"

    db.define_function("greet", Greeter())
    assert db.get_first_value("select greet('bob')") == 'hello bob'
    assert db.functions['greet'].arity == Arity(1, 1)


def test_function_names_are_case_insensitive(db):
    db.define_function("Shout", lambda s: s.upper())
    assert db.get_first_value("select SHOUT('x')") == 'X'
    assert 'shout' in db.functions


def test_arity_mismatch_raises(db):
    db.define_function("one", lambda a: a)
    with pytest.raises(ArityMismatchError) as exc:
        db.execute("select one(1, 2)")
    assert exc.value.name == 'one'
    assert exc.value.given == 2
    assert isinstance(exc.value.__cause__, sqlite3.Error)
    assert db.live_statement_count == 0


def test_explicit_arity_overrides_signature(db):
    db.define_function("loose", lambda *args: len(args), arity=2)
    assert db.get_first_value("select loose(1, 2)") == 2
    with pytest.raises(ArityMismatchError):
        db.execute("select loose(1)")


def test_explicit_variadic_arity(db):
    db.define_function("count_args", lambda *args: len(args), arity=-1)
    assert db.get_first_value("select count_args(1, 2, 3, 4)") == 4


def test_default_parameters_widen_arity(db):
    db.define_function("pad", lambda s, width=5: s.ljust(width, '.'))
    assert db.get_first_value("select pad('ab')") == 'ab...'
    assert db.get_first_value("select pad('ab', 3)") == 'ab.'
    with pytest.raises(ArityMismatchError):
        db.execute("select pad()")


def test_raising_handler_surfaces_original_exception(db):
    def explode(x):
        raise ValueError(f"bad {x}")

    db.define_function("explode", explode)
    with pytest.raises(ValueError, match='bad 7') as exc:
        db.execute("select explode(7)")
    assert isinstance(exc.value.__cause__, sqlite3.OperationalError)
    assert db.live_statement_count == 0


def test_redefinition_replaces_handler(db):
    db.define_function("v", lambda: 1)
    assert db.get_first_value("select v()") == 1
    db.define_function("v", lambda: 2)
    assert db.get_first_value("select v()") == 2
    assert len(db.functions) == 1


def test_function_evaluated_per_row(foo_db):
    seen = []
    foo_db.define_function("mark", lambda a: seen.append(a) or a * 10)
    assert foo_db.execute("select mark(a) from foo order by a") == [(10,), (20,), (30,)]
    assert seen == [1, 2, 3]


def test_invalid_arity_value():
    with pytest.raises(ValueError):
        ScalarFunction("f", lambda: None, arity=-5)


def test_non_callable_handler(db):
    with pytest.raises(TypeError):
        db.define_function("f", 42)


# --- Aggregates ---------------------------------------------------------------------

def test_define_aggregate(foo_db):
    foo_db.define_aggregate("accumulate", Sum)
    value = foo_db.get_first_value("select accumulate(a) from foo")
    assert value == 6


def test_aggregate_fresh_accumulator_per_execution(foo_db):
    created = []

    def factory():
        acc = Sum()
        created.append(acc)
        return acc

    foo_db.define_aggregate("accumulate", factory, arity=1)
    assert foo_db.get_first_value("select accumulate(a) from foo") == 6
    assert foo_db.get_first_value("select accumulate(a) from foo") == 6
    assert len(created) == 2
    assert created[0] is not created[1]


def test_aggregate_groups_get_independent_accumulators(foo_db):
    foo_db.define_aggregate("accumulate", Sum)
    rows = foo_db.execute("select a % 2, accumulate(a) from foo group by a % 2 order by 1")
    assert rows == [(0, 2), (1, 4)]


def test_interleaved_executions_are_independent(foo_db):
    foo_db.define_aggregate("accumulate", Sum)
    first = foo_db.prepare("select accumulate(a) from foo where a < 3")
    second = foo_db.prepare("select accumulate(a) from foo")
    assert first.step() == (3,)
    assert second.step() == (6,)
    first.finalize()
    second.finalize()


def test_aggregate_finalize_called_once(foo_db):
    finalized = []

    class Counting(Sum):
        def finalize(self):
            finalized.append(self.sum)
            return self.sum

    foo_db.define_aggregate("accumulate", Counting)
    foo_db.execute("select accumulate(a) from foo")
    assert finalized == [6]


def test_aggregate_arity_from_step_signature(foo_db):
    foo_db.define_aggregate("accumulate", Sum)
    assert foo_db.functions['accumulate'].arity == Arity(1, 1)
    with pytest.raises(ArityMismatchError):
        foo_db.execute("select accumulate(a, b) from foo")


def test_aggregate_variadic_factory(foo_db):
    class Concat:
        def __init__(self):
            self.parts = []

        def step(self, *values):
            self.parts.append(":".join(str(v) for v in values))

        def finalize(self):
            return ",".join(self.parts)

    foo_db.define_aggregate("joined", Concat)
    assert foo_db.get_first_value("select joined(a, b) from (select * from foo order by a)") == "1:foo,2:bar,3:baz"


def test_aggregate_step_error_surfaces(foo_db):
    class Broken(Sum):
        def step(self, a):
            raise KeyError(a)

    foo_db.define_aggregate("broken", Broken)
    with pytest.raises(KeyError):
        foo_db.execute("select broken(a) from foo")
    assert foo_db.live_statement_count == 0


def test_aggregate_factory_error_surfaces(foo_db):
    def factory():
        raise RuntimeError("no accumulator")

    foo_db.define_aggregate("nothing", factory)
    with pytest.raises(RuntimeError, match="no accumulator"):
        foo_db.execute("select nothing(a) from foo")


def test_aggregate_kind(db):
    db.define_aggregate("accumulate", Sum)
    handler = db.functions['accumulate']
    assert isinstance(handler, AggregateFunction)
    assert handler.kind == 'aggregate'


# --- Redefinition while statements run ------------------------------------------------

def test_redefine_function_between_steps(foo_db):
    foo_db.define_function("hello", lambda a: a * 10)
    stmt = foo_db.prepare("select hello(a) from foo")
    assert stmt.step() == (10,)
    foo_db.define_function("hello", lambda a: a * 100)
    # Row 2 was evaluated with the old handler while row 1 was fetched.
    assert stmt.step() == (20,)
    assert stmt.step() == (300,)
    stmt.finalize()
    assert foo_db.functions['hello'].handler(1) == 100


def test_redefine_aggregate_between_steps(foo_db):
    class Doubled(Sum):
        def finalize(self):
            return self.sum * 2

    foo_db.define_aggregate("accumulate", Sum)
    stmt = foo_db.prepare("select a, (select accumulate(x.a) from foo x where x.a <= foo.a) from foo")
    assert stmt.step() == (1, 1)
    foo_db.define_aggregate("accumulate", Doubled)
    # Row 2 was read ahead with the old factory.
    rows = [stmt.step(), stmt.step()]
    stmt.finalize()
    assert rows == [(2, 3), (3, 12)]
    assert foo_db.get_first_value("select accumulate(a) from foo") == 12


def test_change_of_kind_re_registers(foo_db):
    foo_db.define_function("accumulate", lambda a: a)
    assert foo_db.get_first_value("select accumulate(a) from foo where a = 2") == 2
    foo_db.define_aggregate("accumulate", Sum)
    assert foo_db.get_first_value("select accumulate(a) from foo") == 6
    assert foo_db.functions['accumulate'].kind == 'aggregate'


def test_change_of_kind_refused_while_statement_runs(foo_db):
    foo_db.define_function("hello", lambda a: a)
    stmt = foo_db.prepare("select hello(a) from foo")
    stmt.step()
    with pytest.raises(sqlite3.OperationalError):
        foo_db.define_aggregate("hello", Sum)
    assert foo_db.functions['hello'].kind == 'scalar'
    assert stmt.step() == (2,)
    stmt.finalize()


@pytest.mark.parametrize('value', [2 ** 63, -(2 ** 63) - 1])
def test_integer_out_of_range_raises_overflow(db, value):
    db.define_function("huge", lambda: value)
    with pytest.raises(OverflowError, match='64-bit') as exc:
        db.execute("select huge()")
    assert isinstance(exc.value.__cause__, sqlite3.Error)
    assert db.live_statement_count == 0


def test_integer_range_limits_pass(db):
    db.define_function("edge", lambda sign: (2 ** 63 - 1) if sign > 0 else -(2 ** 63))
    assert db.get_first_value("select edge(1)") == 2 ** 63 - 1
    assert db.get_first_value("select edge(-1)") == -(2 ** 63)
