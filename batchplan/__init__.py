""" Batch planning for data access: load object graphs and upsert records without N+1 round trips

TL;DR
=====

What happens if you touch a relationship while looping over results from the DB?

```python
posts = ssn.query(Post).all()

for post in posts:
    post.user   # load a relationship
    post.media  # and another one
```

Right. If you have 1000 posts, you'll end up with 2001 queries.

And what happens when you import a CSV file row by row?

```python
for row in rows:
    account = ssn.query(Account).filter_by(key=row['key']).first()
    ...
```

Same thing: a couple of queries per row, most of which write nothing at all.

This package makes the number of round trips depend on the *shape* of your request,
not on the number of records.

Fetch Planner
=============

Tell it which relationships you're going to need, and it plans one query per relationship per depth:

```python
from batchplan import plan, execute, registry_from_models, SqlAlchemyStore

registry = registry_from_models(Post, User, Company, Media)
store = SqlAlchemyStore(ssn, [Post, User, Company, Media])

fetch_plan = plan(registry, 'Post', {1, 2, 3}, ['user', 'media', 'user.company'])
graph = execute(fetch_plan, store)

for post in graph.roots:
    graph.related('Post', post.key, 'user')    # an Entity, or None
    graph.related('Post', post.key, 'media')   # a list of Entities
```

That's exactly 4 queries: Posts, their Users, their Media, and the Users' Companies.
With 3 posts, or with 3000.

The plan itself is a plain value: `plan()` makes no queries. You can look at it, test it,
and execute it against any `Store` you like.

The registry is explicit. A path that mentions an undeclared relationship fails early with `UnknownRelationship`:
no partial plan is ever made.

Batch Reconciler
================

Give it a snapshot of what's in the store, and the records you want in there.
It comes up with what to insert, what to update, and what to leave alone:

```python
from batchplan import reconcile, write, records_from_rows

existing = store.snapshot('Account', ['key'])       # 1 query
records = records_from_rows(csv_rows, ['key'])

upsert_plan = reconcile(existing, records, batch_size=1000)
write(upsert_plan, store, 'Account')               # 1 query per 1000 inserts or updates
ssn.commit()
```

Records that haven't changed cost nothing: they're only counted (`upsert_plan.unchanged_count`).

Two incoming records with the same natural key but different values? That's ambiguous:
you get a `NaturalKeyCollision` error instead of a silent last-write-wins.

Server-side defaults, like timestamps, are your policy. Supply them at write time:

```python
write(upsert_plan, store, 'Account',
      prepare_insert=lambda row: {**row, 'created_at': now},
      prepare_update=lambda row: {**row, 'updated_at': now})
```

Logging
=======

All logging is done at DEBUG level to the `batchplan.*` loggers:

    batchplan.planner: Post: planned 4 step(s) for 3 root key(s)
    batchplan.sa_store.SqlAlchemyStore: Post.user: loading for 3 key(s)
    batchplan.reconciler: Reconciled 2 record(s): 1 to insert, 0 to update, 1 unchanged

Database support
================

The SqlAlchemy store uses plain SELECT ... IN, INSERT and UPDATE statements, so it works everywhere.
Composite keys use tuples: `WHERE (a, b) IN ((:a, :b), ...)`: PostgreSQL, MySQL, SQLite 3.15+.

If your backend limits the number of bound parameters, use `SqlAlchemyStore(..., chunk_size=500)`.
"""

# Fetch Planner
from .planner import plan, FetchPlanner, BatchPlan, FetchStep
from .executor import execute, LoadedGraph
from .registry import RelationshipRegistry, Relationship, Cardinality

# Batch Reconciler
from .reconciler import reconcile, write, records_from_rows
from .reconciler import ReconciliationRecord, ReconciliationPlan, WriteReport, DEFAULT_BATCH_SIZE

# Stores
from .entity import Entity
from .store import Store, SnapshotProvider
from .sa_store import SqlAlchemyStore
from .util import registry_from_models

# Exceptions
from .exc import BatchPlanError, PlanningError, ReconciliationError
from .exc import UnknownRelationship, InvalidRelationshipPath, EmptyRootKeySet
from .exc import NaturalKeyCollision, InvalidBatchSize, IncompleteNaturalKey
