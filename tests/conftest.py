from contextlib import closing, contextmanager
from typing import ContextManager

import pytest
import sqlalchemy as sa
import sqlalchemy.orm

from batchplan import SqlAlchemyStore, registry_from_models, RelationshipRegistry
from . import models
from .query_logger import QueryLogger


@pytest.fixture()
def ssn(engine: sa.engine.Engine) -> sa.orm.Session:
    # Clean the DB
    models.Base.metadata.drop_all(bind=engine)
    models.Base.metadata.create_all(bind=engine)

    # New session
    SessionMaker = sa.orm.sessionmaker(autoflush=False, bind=engine)

    with closing(SessionMaker()) as ssn:
        yield ssn


@pytest.fixture()
def blog(ssn: sa.orm.Session) -> sa.orm.Session:
    """ Companies, Users, Posts, Media, Tags, Categories """
    from .models import Company, User, Post, Media, Tag, Category

    python, sql = Tag(id=1, name='python'), Tag(id=2, name='sql')
    acme, globex = Company(id=1, name='Acme'), Company(id=2, name='Globex')
    alice = User(id=1, name='alice', company=acme)
    bob = User(id=2, name='bob', company=globex)
    carol = User(id=3, name='carol')  # no company

    ssn.add_all([
        # Posts by alice, bob, carol. Different numbers of Media.
        Post(id=1, title='first', user=alice, tags=[python, sql], media=[
            Media(id=11, url='/1/a.png'),
            Media(id=12, url='/1/b.png'),
        ]),
        Post(id=2, title='second', user=alice, media=[
            Media(id=21, url='/2/a.png'),
        ]),
        Post(id=3, title='third', user=bob, tags=[sql], media=[
            Media(id=31, url='/3/a.png'),
        ]),
        Post(id=4, title='fourth', user=carol),
        # One Post with no User
        Post(id=5, title='orphan'),
        # A tree of categories
        Category(id=1, name='root', children=[
            Category(id=2, name='child-a', children=[
                Category(id=4, name='grandchild'),
            ]),
            Category(id=3, name='child-b'),
        ]),
    ])
    ssn.commit()
    ssn.expunge_all()
    return ssn


@pytest.fixture()
def accounts(ssn: sa.orm.Session) -> sa.orm.Session:
    """ Two Accounts: A and B """
    from .models import Account
    ssn.add_all([
        Account(key='A', currency='EUR', balance=100),
        Account(key='B', currency='EUR', balance=50),
    ])
    ssn.commit()
    ssn.expunge_all()
    return ssn


@pytest.fixture()
def store(ssn: sa.orm.Session) -> SqlAlchemyStore:
    return SqlAlchemyStore(ssn, models.ALL_MODELS)


@pytest.fixture()
def registry() -> RelationshipRegistry:
    return registry_from_models(*models.ALL_MODELS)


@pytest.fixture(scope='module')
def engine() -> sa.engine.Engine:
    return sa.create_engine('sqlite://', echo=False)


@contextmanager
def query_logger(ssn: sa.orm.Session) -> ContextManager[QueryLogger]:
    """ Log queries, check the final count """
    query_logger = QueryLogger(ssn.get_bind())

    # Log
    with query_logger:
        yield query_logger
