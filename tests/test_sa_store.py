from typing import List

import pytest
import sqlalchemy as sa
import sqlalchemy.orm

from batchplan import plan, execute, reconcile, write, records_from_rows
from batchplan import SqlAlchemyStore, RelationshipRegistry, Relationship, Cardinality, Entity
from .conftest import query_logger
from .models import Post, Account, ALL_MODELS


def test_registry_from_models(registry: RelationshipRegistry):
    assert registry.get('Post', 'user') == Relationship('user', 'Post', 'User', Cardinality.ONE_TO_ONE)
    assert registry.get('Post', 'media') == Relationship('media', 'Post', 'Media', Cardinality.ONE_TO_MANY)
    assert registry.get('Post', 'tags') == Relationship('tags', 'Post', 'Tag', Cardinality.ONE_TO_MANY)
    assert registry.get('Category', 'parent').cardinality is Cardinality.ONE_TO_ONE
    assert registry.get('Category', 'children').cardinality is Cardinality.ONE_TO_MANY
    assert set(registry.relationships('Account')) == set()


def test_lazyload_without_fixes(blog: sa.orm.Session):
    """ Baseline: relationship lazy-load triggers one query per instance """
    posts = load_posts(blog)

    with query_logger(blog) as ql:
        # Touch `.media` on every Post
        for post in posts:
            post.media

        # Result: one query per object
        assert ql.queries == len(posts)
        assert ql.queries > 3  # sufficiently large to notice


def test_execute_plan(blog: sa.orm.Session, store: SqlAlchemyStore, registry: RelationshipRegistry):
    """ One query per step """
    p = plan(registry, 'Post', {1, 2, 3, 4, 5}, ['user', 'media', 'user.company'])

    with query_logger(blog) as ql:
        graph = execute(p, store)

        # Posts, Users, Media, Companies
        assert ql.queries == 4

    # Roots, in order
    assert [post.key for post in graph.roots] == [1, 2, 3, 4, 5]
    assert graph.roots[0] == Entity('Post', 1, {'id': 1, 'user_id': 1, 'title': 'first'})

    # Many-to-one
    assert graph.related('Post', 1, 'user')['name'] == 'alice'
    assert graph.related('Post', 3, 'user')['name'] == 'bob'
    assert graph.related('Post', 5, 'user') is None

    # One-to-many
    assert [m['url'] for m in graph.related('Post', 1, 'media')] == ['/1/a.png', '/1/b.png']
    assert [m.key for m in graph.related('Post', 3, 'media')] == [31]
    assert graph.related('Post', 4, 'media') == []

    # Depth 2
    assert graph.related('User', 1, 'company')['name'] == 'Acme'
    assert graph.related('User', 2, 'company')['name'] == 'Globex'
    assert graph.related('User', 3, 'company') is None


@pytest.mark.parametrize('root_keys', [{1}, {1, 2}, {1, 2, 3, 4, 5}])
def test_execute_plan_query_count_does_not_grow(blog: sa.orm.Session, store: SqlAlchemyStore, registry: RelationshipRegistry, root_keys):
    """ The number of queries depends on the paths, not on the number of roots """
    with query_logger(blog) as ql:
        execute(plan(registry, 'Post', root_keys, ['user.company', 'media']), store)
        assert ql.queries == 4


def test_execute_plan_skips_empty_steps(blog: sa.orm.Session, store: SqlAlchemyStore, registry: RelationshipRegistry):
    """ Post #5 has no user: no point in looking for their company """
    with query_logger(blog) as ql:
        graph = execute(plan(registry, 'Post', {5}, ['user.company']), store)
        assert ql.queries == 2

    assert graph.related('Post', 5, 'user') is None


def test_execute_plan_many_to_many(blog: sa.orm.Session, store: SqlAlchemyStore, registry: RelationshipRegistry):
    with query_logger(blog) as ql:
        graph = execute(plan(registry, 'Post', {1, 2, 3}, ['tags']), store)
        assert ql.queries == 2

    assert [t['name'] for t in graph.related('Post', 1, 'tags')] == ['python', 'sql']
    assert graph.related('Post', 2, 'tags') == []
    assert [t['name'] for t in graph.related('Post', 3, 'tags')] == ['sql']


def test_execute_plan_self_referential(blog: sa.orm.Session, store: SqlAlchemyStore, registry: RelationshipRegistry):
    with query_logger(blog) as ql:
        graph = execute(plan(registry, 'Category', {1}, ['children.children', 'parent']), store)
        assert ql.queries == 4

    assert [c['name'] for c in graph.related('Category', 1, 'children')] == ['child-a', 'child-b']
    assert [c['name'] for c in graph.related('Category', 2, 'children')] == ['grandchild']
    assert graph.related('Category', 3, 'children') == []
    assert graph.related('Category', 1, 'parent') is None


def test_execute_plan_chunked(blog: sa.orm.Session, registry: RelationshipRegistry):
    """ With chunk_size, long key lists are split """
    store = SqlAlchemyStore(blog, ALL_MODELS, chunk_size=2)

    with query_logger(blog) as ql:
        graph = execute(plan(registry, 'Post', {1, 2, 3, 4}, ['media']), store)
        # 2 chunks of Posts, 2 chunks of Media
        assert ql.queries == 4

    assert [m.key for m in graph.related('Post', 1, 'media')] == [11, 12]
    assert [m.key for m in graph.related('Post', 3, 'media')] == [31]


def test_store_unknown(blog: sa.orm.Session, store: SqlAlchemyStore):
    with pytest.raises(KeyError):
        store.fetch_by_keys('Nope', None, [1])
    with pytest.raises(KeyError):
        store.fetch_by_keys('Post', 'nope', [1])

    # No keys, no queries
    with query_logger(blog) as ql:
        assert store.fetch_by_keys('Post', 'media', []) == []
        assert ql.queries == 0


def test_snapshot(accounts: sa.orm.Session, store: SqlAlchemyStore):
    with query_logger(accounts) as ql:
        # Everything
        assert store.snapshot('Account', ['key'], columns=['balance']) == {
            'A': {'balance': 100},
            'B': {'balance': 50},
        }

        # Some keys
        assert store.snapshot('Account', ['key'], keys=['B'], columns=['balance']) == {
            'B': {'balance': 50},
        }

        # A single key column, as a string
        assert store.snapshot('Account', 'key', keys=['A']) == {
            'A': {'id': 1, 'currency': 'EUR', 'balance': 100, 'updated_at': None},
        }

        # Composite key; all other columns
        assert store.snapshot('Account', ['key', 'currency']) == {
            ('A', 'EUR'): {'id': 1, 'balance': 100, 'updated_at': None},
            ('B', 'EUR'): {'id': 2, 'balance': 50, 'updated_at': None},
        }

        assert ql.queries == 4

        # No keys: no query
        assert store.snapshot('Account', ['key'], keys=[]) == {}
        assert ql.queries == 4


def test_reconcile_and_write(accounts: sa.orm.Session, store: SqlAlchemyStore):
    """ Import: 1 query to read, 1 query per batch to write, nothing for unchanged rows """
    incoming = records_from_rows([
        {'key': 'A', 'currency': 'EUR', 'balance': 100},
        {'key': 'B', 'currency': 'EUR', 'balance': 75},
        {'key': 'C', 'currency': 'EUR', 'balance': 10},
        {'key': 'D', 'currency': 'USD', 'balance': 20},
    ], ['key', 'currency'])

    with query_logger(accounts) as ql:
        existing = store.snapshot('Account', ['key', 'currency'])
        upsert_plan = reconcile(existing, incoming, batch_size=1)
        report = write(upsert_plan, store, 'Account',
                       prepare_update=lambda row: {**row, 'updated_at': '2020-01-01'})

        # 1 snapshot + 2 inserts + 1 update
        assert ql.queries == 4
    accounts.commit()

    assert (report.inserted, report.updated, report.batches) == (2, 1, 3)
    assert upsert_plan.unchanged_count == 1

    # Check the DB
    assert load_accounts(accounts) == [
        ('A', 'EUR', 100, None),
        ('B', 'EUR', 75, '2020-01-01'),
        ('C', 'EUR', 10, None),
        ('D', 'USD', 20, None),
    ]

    # Do it again: nothing to write
    with query_logger(accounts) as ql:
        existing = store.snapshot('Account', ['key', 'currency'])
        upsert_plan = reconcile(existing, incoming)
        write(upsert_plan, store, 'Account')

        assert ql.queries == 1
    assert upsert_plan.is_noop
    assert upsert_plan.unchanged_count == len(incoming)


def test_write_sparse_inserts(accounts: sa.orm.Session, store: SqlAlchemyStore):
    """ Rows in one batch carry different columns: none of them is lost """
    incoming = records_from_rows([
        {'key': 'C', 'currency': 'EUR', 'balance': 10},
        {'key': 'D', 'currency': 'EUR', 'balance': 20, 'updated_at': 'x'},
        {'key': 'E', 'currency': 'EUR', 'balance': 30},
    ], ['key', 'currency'])

    upsert_plan = reconcile(store.snapshot('Account', ['key', 'currency']), incoming)
    assert len(upsert_plan.insert_batches) == 1

    with query_logger(accounts) as ql:
        report = write(upsert_plan, store, 'Account')

        # 1 executemany() per set of columns
        assert ql.queries == 2
    accounts.commit()

    assert (report.inserted, report.batches) == (3, 1)
    assert load_accounts(accounts) == [
        ('A', 'EUR', 100, None),
        ('B', 'EUR', 50, None),
        ('C', 'EUR', 10, None),
        ('D', 'EUR', 20, 'x'),
        ('E', 'EUR', 30, None),
    ]


def test_write_sparse_updates(accounts: sa.orm.Session, store: SqlAlchemyStore):
    """ Rows in one batch update different columns: each row updates its own """
    incoming = records_from_rows([
        {'key': 'A', 'currency': 'EUR', 'balance': 1},
        {'key': 'B', 'currency': 'EUR', 'updated_at': 'y'},
    ], ['key', 'currency'])

    upsert_plan = reconcile(store.snapshot('Account', ['key', 'currency']), incoming)
    assert len(upsert_plan.update_batches) == 1

    with query_logger(accounts) as ql:
        report = write(upsert_plan, store, 'Account')

        # 1 executemany() per set of columns
        assert ql.queries == 2
    accounts.commit()

    assert (report.updated, report.batches) == (2, 1)
    assert load_accounts(accounts) == [
        ('A', 'EUR', 1, None),
        ('B', 'EUR', 50, 'y'),
    ]

    # Applied: nothing left to do
    upsert_plan = reconcile(store.snapshot('Account', ['key', 'currency']), incoming)
    assert upsert_plan.is_noop


# region Helpers


def load_posts(ssn: sa.orm.Session) -> List[Post]:
    """ Load all Posts from the db """
    return (
        ssn.query(Post)
            .order_by(Post.id.asc())  # predictable order
            .all()
    )


def load_accounts(ssn: sa.orm.Session) -> List[tuple]:
    """ Load all Accounts from the db, as tuples """
    return [
        tuple(row)
        for row in ssn.execute(
            sa.select(Account.key, Account.currency, Account.balance, Account.updated_at)
                .order_by(Account.key, Account.currency)
        )
    ]


# endregion
