import logging
from dataclasses import dataclass
from typing import Optional

import mysql.connector
from mysql.connector import pooling

from config import DB_CONFIG

logger = logging.getLogger(__name__)

# Create connection pool
connection_pool = None


@dataclass
class TestScoreRecord:
    """One graded attempt, as written to the test_scores table."""

    book: str
    module: str
    test_number: int
    score: int
    total_questions: int
    percentage: int
    ielts_band_score: float
    time_taken: Optional[int] = None
    user_id: Optional[str] = None


def init_db():
    """Initialize database and create tables"""
    global connection_pool

    # First connect without database to create it if needed
    try:
        conn = mysql.connector.connect(
            host=DB_CONFIG['host'],
            user=DB_CONFIG['user'],
            password=DB_CONFIG['password']
        )
        cursor = conn.cursor()
        cursor.execute(f"CREATE DATABASE IF NOT EXISTS {DB_CONFIG['database']} CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci")
        conn.close()
    except mysql.connector.Error as e:
        logger.error("Error creating database: %s", e)

    # Create connection pool
    try:
        connection_pool = pooling.MySQLConnectionPool(**DB_CONFIG)
    except mysql.connector.Error as e:
        logger.error("Error creating connection pool: %s", e)
        return

    # Create tables
    create_tables()


def get_connection():
    """Get connection from pool"""
    global connection_pool
    if connection_pool is None:
        init_db()
    if connection_pool is None:
        raise RuntimeError("Database is not available")
    return connection_pool.get_connection()


def create_tables():
    """Create all necessary tables"""
    conn = get_connection()
    cursor = conn.cursor()

    # Graded attempts
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS test_scores (
            id INT AUTO_INCREMENT PRIMARY KEY,
            user_id VARCHAR(100) NULL,
            book VARCHAR(50) NOT NULL,
            module VARCHAR(20) NOT NULL,
            test_number INT NOT NULL,
            score INT NOT NULL,
            total_questions INT NOT NULL,
            percentage INT NOT NULL,
            ielts_band_score FLOAT NOT NULL,
            time_taken INT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            INDEX idx_test (book, module, test_number),
            INDEX idx_user_test (user_id, book, module, test_number)
        )
    ''')

    # Page views per test per day
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS daily_test_clicks (
            id INT AUTO_INCREMENT PRIMARY KEY,
            book VARCHAR(50) NOT NULL,
            module VARCHAR(20) NOT NULL,
            test_number INT NOT NULL,
            click_date DATE NOT NULL,
            click_count INT NOT NULL DEFAULT 0,
            UNIQUE KEY uq_test_day (book, module, test_number, click_date)
        )
    ''')

    conn.commit()
    cursor.close()
    conn.close()


# Test score operations
def save_test_score(record):
    logger.info(
        "Saving test score %s %s test %s: %s/%s (user %s)",
        record.book, record.module, record.test_number, record.score,
        record.total_questions, 'present' if record.user_id else 'null'
    )
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('''
        INSERT INTO test_scores
        (user_id, book, module, test_number, score, total_questions, percentage, ielts_band_score, time_taken)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
    ''', (
        record.user_id,
        record.book,
        record.module,
        record.test_number,
        record.score,
        record.total_questions,
        record.percentage,
        record.ielts_band_score,
        record.time_taken
    ))
    conn.commit()
    score_id = cursor.lastrowid
    cursor.close()
    conn.close()
    return score_id


def get_user_test_history(book, module, test_number, user_id):
    conn = get_connection()
    cursor = conn.cursor(dictionary=True)
    cursor.execute('''
        SELECT * FROM test_scores
        WHERE book = %s AND module = %s AND test_number = %s AND user_id = %s
        ORDER BY created_at DESC
    ''', (book, module, test_number, user_id))
    history = cursor.fetchall()
    cursor.close()
    conn.close()

    return {
        'test_history': history,
        'best_score': max((row['score'] for row in history), default=None),
        'total_attempts': len(history)
    }


# View tracking
def record_test_view(book, module, test_number):
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('''
        INSERT INTO daily_test_clicks (book, module, test_number, click_date, click_count)
        VALUES (%s, %s, %s, CURDATE(), 1)
        ON DUPLICATE KEY UPDATE click_count = click_count + 1
    ''', (book, module, test_number))
    conn.commit()
    cursor.close()
    conn.close()


# Statistics
def get_test_statistics(book, module, test_number, user_id=None):
    conn = get_connection()
    cursor = conn.cursor(dictionary=True)

    stats = {}

    cursor.execute('''
        SELECT COALESCE(SUM(click_count), 0) as total
        FROM daily_test_clicks
        WHERE book = %s AND module = %s AND test_number = %s
    ''', (book, module, test_number))
    stats['total_views'] = int(cursor.fetchone()['total'] or 0)

    cursor.execute('''
        SELECT COUNT(*) as count
        FROM test_scores
        WHERE book = %s AND module = %s AND test_number = %s
    ''', (book, module, test_number))
    stats['total_attempts'] = cursor.fetchone()['count']

    stats['user'] = None
    if user_id:
        cursor.execute('''
            SELECT score, percentage, ielts_band_score, created_at
            FROM test_scores
            WHERE book = %s AND module = %s AND test_number = %s AND user_id = %s
            ORDER BY created_at DESC
        ''', (book, module, test_number, user_id))
        rows = cursor.fetchall()
        stats['user'] = {
            'attempts': len(rows),
            'best_score': max((row['score'] for row in rows), default=None),
            'latest_score': rows[0]['score'] if rows else None
        }

    cursor.close()
    conn.close()

    return stats
