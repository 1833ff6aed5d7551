import nox.sessions


PYTHON_VERSIONS = ['3.7', '3.8', '3.9', '3.10', '3.11', '3.12']
SQLALCHEMY_VERIONS = [
    *(f'1.4.{x}'
      for x in (24, 36, 46, 54)),
    *(f'2.0.{x}'
      for x in (0, 10, 20, 30)),
]


nox.options.reuse_existing_virtualenvs = True
nox.options.sessions = ['tests', 'tests_sqlalchemy']


@nox.session(python=PYTHON_VERSIONS)
def tests(session: nox.sessions.Session, sqlalchemy=None):
    """ Run the full tests suite """
    session.install('-e', '.[test]')

    if sqlalchemy:
        session.install(f'sqlalchemy=={sqlalchemy}')

    session.run('pytest', 'tests/')


@nox.session(python='3.9')
@nox.parametrize('sqlalchemy', SQLALCHEMY_VERIONS)
def tests_sqlalchemy(session: nox.sessions.Session, sqlalchemy):
    """ Test against a specific SqlAlchemy version """
    tests(session, sqlalchemy)
