import pytest

from packages.issue_classifier.config import TrainingConfig
from packages.issue_classifier.pipeline import train_pipeline
from packages.issue_classifier.schema import Record

TRAIN_ROWS = [
    ("1", "WebSockets", "WebSockets communication is slow", "SignalR websockets messages arrive slowly over the socket"),
    ("2", "WebSockets", "WebSocket connection closes", "The websocket handshake succeeds but the socket closes after a few messages"),
    ("3", "WebSockets", "SignalR hub disconnects", "SignalR drops the websockets transport and falls back to long polling"),
    ("4", "WebSockets", "Socket frames are dropped", "Large websocket frames are dropped by the server socket"),
    ("5", "WebSockets", "WebSockets keep alive ping", "Ping pong keep alive messages on the websocket are not sent"),
    ("6", "WebSockets", "Streaming over websockets stalls", "SignalR streaming over websockets stalls after reconnect"),
    ("7", "EntityFramework", "Entity Framework migration fails", "Running the EF migration against the database throws an exception"),
    ("8", "EntityFramework", "EF Core query crashes", "A LINQ query in EF Core crashes when connecting to the database"),
    ("9", "EntityFramework", "DbContext throws on save", "SaveChanges on the DbContext throws a database update exception"),
    ("10", "EntityFramework", "Entity Framework connection string", "EF cannot open a connection to the SQL database"),
    ("11", "EntityFramework", "Lazy loading in Entity Framework", "Navigation properties are not loaded from the database by EF"),
    ("12", "EntityFramework", "EF model snapshot is wrong", "The Entity Framework model snapshot does not match the database schema"),
]

TEST_ROWS = [
    ("t1", "EntityFramework", "Entity Framework crashes", "When connecting to the database, EF is crashing"),
    ("t2", "WebSockets", "WebSockets are slow", "SignalR websocket messages take seconds to arrive"),
    ("t3", "EntityFramework", "EF migration exception", "The database migration with Entity Framework throws"),
    ("t4", "WebSockets", "Socket disconnects", "The websocket closes after the handshake"),
]

HEADER = "ID\tArea\tTitle\tDescription"


def _records(rows):
    return [Record(id=i, label=label, title=t, description=d) for i, label, t, d in rows]


def write_tsv(path, rows, header=HEADER):
    lines = [header] + ["\t".join(row) for row in rows]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def training_records():
    return _records(TRAIN_ROWS)


@pytest.fixture
def test_records():
    return _records(TEST_ROWS)


@pytest.fixture
def fast_config():
    return TrainingConfig(max_passes=20, l2=1e-3)


@pytest.fixture(scope="session")
def fitted_pipeline():
    """Pipeline trained once per session on the two-area corpus."""
    return train_pipeline(_records(TRAIN_ROWS), TrainingConfig(max_passes=20, l2=1e-3))


@pytest.fixture
def train_tsv(tmp_path):
    return write_tsv(tmp_path / "issues_train.tsv", TRAIN_ROWS)


@pytest.fixture
def test_tsv(tmp_path):
    return write_tsv(tmp_path / "issues_test.tsv", TEST_ROWS)


@pytest.fixture
def unlabeled_tsv(tmp_path):
    rows = [
        ("p1", "", "Entity Framework crashes", "When connecting to the database, EF is crashing"),
        ("p2", "", "Github Down", "When going to the website, github says it is down"),
    ]
    return write_tsv(tmp_path / "my_test_data.tsv", rows)


@pytest.fixture
def tsv_writer():
    return write_tsv
