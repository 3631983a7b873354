from stockchat import db
from stockchat.config import Settings


def test_init_and_close_db():
    # MongoClient connects lazily, so no server is needed here
    database = db.init_db(Settings(mongodb_db="inventory_test", query_timeout_seconds=1))

    assert database.name == "inventory_test"
    assert db._client is not None

    db.close_db()
    assert db._client is None
    db.close_db()
