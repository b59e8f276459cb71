import sqlite3

DEFAULT_DB_NAME = "contacts.db"


def init_db(db_name=DEFAULT_DB_NAME):
    conn = sqlite3.connect(db_name)
    cursor = conn.cursor()

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS Contact (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            phoneNumber TEXT,
            email TEXT,
            linkedId INTEGER,
            linkPrecedence TEXT CHECK(linkPrecedence IN ('secondary', 'primary')),
            createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
            updatedAt DATETIME DEFAULT CURRENT_TIMESTAMP,
            deletedAt DATETIME,
            FOREIGN KEY (linkedId) REFERENCES Contact (id)
        )
    ''')
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_email ON Contact (email)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_phone ON Contact (phoneNumber)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_linked ON Contact (linkedId)")
    conn.commit()

    conn.close()


def get_db_connection(db_name=DEFAULT_DB_NAME, timeout=5.0):
    # autocommit mode: callers open transactions explicitly with BEGIN
    conn = sqlite3.connect(db_name, timeout=timeout, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn
