"""
Database service for the Kokbok recipe pipeline.

SQLite implementation of the two contracts the pipeline consumes: taxonomy
search / create-if-absent for foods and units, and the flat recipe save
contract. Storage failures surface as PersistenceError with a structured
code derived from SQLite's extended result codes.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from models import CanonicalRecipe, TaxonomyEntry, TaxonomyKind, TaxonomyMatch, TaxonomyStatus
from services.errors import PersistenceError, PersistenceErrorCode
from utils import get_logger, text_rank, trigram_similarity

logger = get_logger(__name__)

MIN_FOOD_QUERY_LENGTH = 2
MIN_UNIT_QUERY_LENGTH = 1
MIN_SEARCH_RANK = 0.3

_CONSTRAINT_CODES = {
    'SQLITE_CONSTRAINT_UNIQUE': PersistenceErrorCode.DUPLICATE,
    'SQLITE_CONSTRAINT_PRIMARYKEY': PersistenceErrorCode.DUPLICATE,
    'SQLITE_CONSTRAINT_FOREIGNKEY': PersistenceErrorCode.INVALID_REFERENCE,
    'SQLITE_CONSTRAINT_NOTNULL': PersistenceErrorCode.INVALID_REFERENCE,
    'SQLITE_CONSTRAINT_CHECK': PersistenceErrorCode.INVALID_REFERENCE,
}

RECIPE_FIELDS = (
    'name', 'description', 'author', 'cuisine', 'recipe_yield', 'recipe_yield_name',
    'prep_time', 'cook_time', 'categories', 'source_url', 'image_url'
)


def _key(text: str) -> str:
    return (text or "").strip().lower()


def to_persistence_error(error: sqlite3.Error) -> PersistenceError:
    """Map a SQLite error to a PersistenceError by its extended result code"""
    error_name = getattr(error, 'sqlite_errorname', None)
    code = _CONSTRAINT_CODES.get(error_name, PersistenceErrorCode.STORAGE_FAILURE)
    return PersistenceError(code, f"{error_name or type(error).__name__}: {error}")


class DatabaseService:
    """
    Centralized database service for all SQLite operations.

    In-memory databases keep one shared connection guarded by a lock so the
    resolver's worker threads can use it.
    """

    def __init__(self, db_path: str = "kokbok.db"):
        self.db_path = db_path
        project_root = Path(__file__).parent.parent
        self.schema_path = project_root / "database_schema.sql"
        self._lock = threading.RLock()
        self._persistent_conn = None
        if db_path == ":memory:":
            self._persistent_conn = self._connect()
        self.initialize_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def get_connection(self):
        """Context manager for database connections with proper cleanup"""
        if self._persistent_conn:
            with self._lock:
                try:
                    yield self._persistent_conn
                except Exception as e:
                    self._persistent_conn.rollback()
                    logger.error(f"Database error: {e}")
                    raise
        else:
            conn = None
            try:
                conn = self._connect()
                yield conn
            except Exception as e:
                if conn:
                    conn.rollback()
                logger.error(f"Database error: {e}")
                raise
            finally:
                if conn:
                    conn.close()

    def initialize_database(self):
        """Create tables from the schema file if they do not exist"""
        schema_file = Path(self.schema_path)
        if not schema_file.exists():
            logger.error(f"Schema file not found: {schema_file}")
            raise FileNotFoundError(f"Database schema file not found: {schema_file}")

        with open(schema_file, 'r', encoding='utf-8') as f:
            schema_sql = f.read()

        with self.get_connection() as conn:
            conn.executescript(schema_sql)
            conn.commit()
        logger.info(f"Database initialized: {self.db_path}")

    # Taxonomy: foods

    def create_food(self, name: str, status: TaxonomyStatus = TaxonomyStatus.APPROVED,
                    created_by: Optional[str] = None) -> TaxonomyEntry:
        """Insert a food directly (seeding and administration)"""
        name = name.strip()
        try:
            with self.get_connection() as conn:
                cursor = conn.execute(
                    "INSERT INTO foods (name, name_key, status, created_by) VALUES (?, ?, ?, ?)",
                    (name, _key(name), status.value, created_by)
                )
                conn.commit()
                food_id = cursor.lastrowid
        except sqlite3.Error as e:
            raise to_persistence_error(e) from e
        return self.get_food(food_id)

    def get_food(self, food_id: int) -> Optional[TaxonomyEntry]:
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM foods WHERE id = ?", (food_id,)).fetchone()
        return self._row_to_food(row) if row else None

    def _visible_foods(self, user_id: Optional[str]) -> List[sqlite3.Row]:
        with self.get_connection() as conn:
            return conn.execute(
                "SELECT * FROM foods WHERE status = 'approved' "
                "OR (status = 'pending' AND created_by IS NOT NULL AND created_by = ?)",
                (user_id,)
            ).fetchall()

    def search_foods(self, query: str, limit: int = 10, user_id: Optional[str] = None) -> List[TaxonomyMatch]:
        """
        Ranked food search over approved foods plus the user's own pending ones.

        Exact matches rank 1.0, prefix matches 0.9, others by trigram
        similarity. Approved foods sort before pending, then by rank and name.
        """
        query = (query or "").strip()
        if len(query) < MIN_FOOD_QUERY_LENGTH:
            return []

        query_key = _key(query)
        matches = []
        for row in self._visible_foods(user_id):
            rank = text_rank(query, row['name'])
            if rank < MIN_SEARCH_RANK and query_key not in row['name_key']:
                continue
            matches.append(TaxonomyMatch(
                id=row['id'],
                name=row['name'],
                rank=rank,
                status=TaxonomyStatus(row['status'])
            ))

        matches.sort(key=lambda m: (m.status != TaxonomyStatus.APPROVED, -m.rank, m.name.lower()))
        return matches[:limit]

    def get_or_create_food(self, name: str, user_id: Optional[str] = None,
                           duplicate_threshold: float = 0.7) -> Optional[int]:
        """
        Return the id of a matching food, creating a pending one if needed.

        Returns None (creating nothing) for blank names and when an existing
        food other than an exact match is more similar than duplicate_threshold.
        """
        if not name or not name.strip():
            return None

        name = name.strip()
        name_key = _key(name)

        with self.get_connection() as conn:
            rows = conn.execute("SELECT * FROM foods WHERE status != 'rejected'").fetchall()

            for row in rows:
                if row['name_key'] != name_key:
                    continue
                if row['status'] == TaxonomyStatus.APPROVED.value:
                    return row['id']
                if user_id is not None and row['created_by'] == user_id:
                    return row['id']

            for row in rows:
                if row['name_key'] == name_key or trigram_similarity(name_key, row['name_key']) > duplicate_threshold:
                    logger.info(f"Not creating food '{name}': similar to existing '{row['name']}'")
                    return None

            try:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO foods (name, name_key, status, created_by) VALUES (?, ?, 'pending', ?)",
                    (name, name_key, user_id)
                )
                conn.commit()
            except sqlite3.Error as e:
                raise to_persistence_error(e) from e

            if cursor.rowcount:
                logger.info(f"Created pending food '{name}' for user {user_id}")
                return cursor.lastrowid

            # Lost a race with a concurrent insert of the same name
            row = conn.execute("SELECT id, status FROM foods WHERE name_key = ?", (name_key,)).fetchone()
            if row is None or row['status'] == TaxonomyStatus.REJECTED.value:
                return None
            return row['id']

    def set_food_status(self, food_id: int, status: TaxonomyStatus) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute("UPDATE foods SET status = ? WHERE id = ?", (status.value, food_id))
            conn.commit()
            return cursor.rowcount > 0

    # Taxonomy: units

    def create_unit(self, name: str, plural: Optional[str] = None,
                    abbreviation: Optional[str] = None) -> TaxonomyEntry:
        name = name.strip()
        try:
            with self.get_connection() as conn:
                cursor = conn.execute(
                    "INSERT INTO units (name, name_key, plural, abbreviation) VALUES (?, ?, ?, ?)",
                    (name, _key(name), plural, abbreviation)
                )
                conn.commit()
                unit_id = cursor.lastrowid
                row = conn.execute("SELECT * FROM units WHERE id = ?", (unit_id,)).fetchone()
        except sqlite3.Error as e:
            raise to_persistence_error(e) from e
        return self._row_to_unit(row)

    def search_units(self, query: str, limit: int = 10) -> List[TaxonomyMatch]:
        """Ranked unit search over name, plural and abbreviation"""
        query = (query or "").strip()
        if len(query) < MIN_UNIT_QUERY_LENGTH:
            return []

        with self.get_connection() as conn:
            rows = conn.execute("SELECT * FROM units").fetchall()

        matches = []
        for row in rows:
            rank = max(text_rank(query, row[column] or "") for column in ('name', 'plural', 'abbreviation'))
            if rank < MIN_SEARCH_RANK:
                continue
            matches.append(TaxonomyMatch(
                id=row['id'],
                name=row['name'],
                rank=rank,
                abbreviation=row['abbreviation'] or None
            ))

        matches.sort(key=lambda m: (-m.rank, m.name.lower()))
        return matches[:limit]

    def get_unit(self, name: str) -> Optional[TaxonomyEntry]:
        """Case-insensitive lookup by name, plural or abbreviation"""
        name_key = _key(name)
        if not name_key:
            return None

        with self.get_connection() as conn:
            rows = conn.execute("SELECT * FROM units ORDER BY id").fetchall()
        for row in rows:
            keys = {_key(row['name']), _key(row['plural']), _key(row['abbreviation'])}
            if name_key in keys:
                return self._row_to_unit(row)
        return None

    # Recipes: flat save contract

    def save_recipe(self, fields: Dict[str, Any], flat_ingredients: List[Dict[str, Any]],
                    flat_instructions: List[Dict[str, Any]], owner: Optional[str] = None) -> int:
        """
        Persist a recipe from the flat save format.

        ``{"group": name}`` markers open a group; following items belong to it.
        Items before the first marker are ungrouped.

        Raises:
            PersistenceError: with DUPLICATE, INVALID_REFERENCE or STORAGE_FAILURE
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.execute(
                    f"INSERT INTO recipes ({', '.join(RECIPE_FIELDS)}, owner) "
                    f"VALUES ({', '.join('?' for _ in RECIPE_FIELDS)}, ?)",
                    self._recipe_values(fields) + (owner,)
                )
                recipe_id = cursor.lastrowid
                self._insert_items(conn, recipe_id, flat_ingredients, flat_instructions)
                conn.commit()
        except sqlite3.Error as e:
            error = to_persistence_error(e)
            logger.error(f"Failed to save recipe '{fields.get('name')}': {error}")
            raise error from e

        logger.info(f"Saved recipe {recipe_id} '{fields.get('name')}'")
        return recipe_id

    def replace_recipe(self, recipe_id: int, fields: Dict[str, Any],
                       flat_ingredients: List[Dict[str, Any]],
                       flat_instructions: List[Dict[str, Any]]):
        """Full replacement of a recipe's fields, ingredients and instructions"""
        try:
            with self.get_connection() as conn:
                assignments = ', '.join(f"{column} = ?" for column in RECIPE_FIELDS)
                cursor = conn.execute(
                    f"UPDATE recipes SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    self._recipe_values(fields) + (recipe_id,)
                )
                if cursor.rowcount == 0:
                    conn.rollback()
                    raise PersistenceError(PersistenceErrorCode.NOT_FOUND, f"recipe {recipe_id}")

                for table in ('ingredients', 'ingredient_groups', 'instructions', 'instruction_groups'):
                    conn.execute(f"DELETE FROM {table} WHERE recipe_id = ?", (recipe_id,))
                self._insert_items(conn, recipe_id, flat_ingredients, flat_instructions)
                conn.commit()
        except sqlite3.Error as e:
            error = to_persistence_error(e)
            logger.error(f"Failed to replace recipe {recipe_id}: {error}")
            raise error from e

    def get_recipe(self, recipe_id: int) -> Optional[CanonicalRecipe]:
        """Load a recipe; ungrouped items first, then groups in sort order"""
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM recipes WHERE id = ?", (recipe_id,)).fetchone()
            if not row:
                return None

            ingredient_rows = conn.execute("""
                SELECT i.*, g.name AS group_name, g.sort_order AS group_order
                FROM ingredients i
                LEFT JOIN ingredient_groups g ON i.group_id = g.id
                WHERE i.recipe_id = ?
                ORDER BY g.sort_order IS NOT NULL, g.sort_order, i.sort_order
            """, (recipe_id,)).fetchall()

            instruction_rows = conn.execute("""
                SELECT s.*, g.name AS group_name, g.sort_order AS group_order
                FROM instructions s
                LEFT JOIN instruction_groups g ON s.group_id = g.id
                WHERE s.recipe_id = ?
                ORDER BY g.sort_order IS NOT NULL, g.sort_order, s.sort_order
            """, (recipe_id,)).fetchall()

        flat_ingredients = self._rows_to_flat(ingredient_rows, lambda r: {
            "id": r['id'], "name": r['name'], "quantity": r['quantity'] or "",
            "measurement": r['measurement'] or "", "form": r['form'],
            "food_id": r['food_id'], "unit_id": r['unit_id'],
        })
        flat_instructions = self._rows_to_flat(instruction_rows, lambda r: {
            "id": r['id'], "step": r['step'],
        })

        return CanonicalRecipe.from_flat(self._row_to_fields(row), flat_ingredients, flat_instructions)

    def list_recipes(self, owner: Optional[str] = None, limit: int = 200) -> List[CanonicalRecipe]:
        with self.get_connection() as conn:
            if owner is None:
                rows = conn.execute("SELECT id FROM recipes ORDER BY id LIMIT ?", (limit,)).fetchall()
            else:
                rows = conn.execute("SELECT id FROM recipes WHERE owner = ? ORDER BY id LIMIT ?",
                                    (owner, limit)).fetchall()
        return [recipe for recipe in (self.get_recipe(r['id']) for r in rows) if recipe]

    def set_recipe_image(self, recipe_id: int, image_id: str) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute("UPDATE recipes SET image_id = ? WHERE id = ?", (image_id, recipe_id))
            conn.commit()
            return cursor.rowcount > 0

    def get_recipe_image(self, recipe_id: int) -> Optional[str]:
        with self.get_connection() as conn:
            row = conn.execute("SELECT image_id FROM recipes WHERE id = ?", (recipe_id,)).fetchone()
        return row['image_id'] if row else None

    def delete_recipe(self, recipe_id: int) -> bool:
        """Delete a recipe; groups, ingredients and steps cascade"""
        try:
            with self.get_connection() as conn:
                cursor = conn.execute("DELETE FROM recipes WHERE id = ?", (recipe_id,))
                conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise to_persistence_error(e) from e

    # Helper Methods

    def _insert_items(self, conn, recipe_id: int, flat_ingredients, flat_instructions):
        group_id = None
        group_order = 0
        for position, item in enumerate(flat_ingredients or []):
            if "group" in item:
                cursor = conn.execute(
                    "INSERT INTO ingredient_groups (recipe_id, name, sort_order) VALUES (?, ?, ?)",
                    (recipe_id, item["group"], group_order)
                )
                group_id = cursor.lastrowid
                group_order += 1
                continue
            conn.execute("""
                INSERT INTO ingredients (recipe_id, group_id, sort_order, name, quantity,
                                         measurement, form, food_id, unit_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                recipe_id, group_id, position,
                item.get("name") or "",
                item.get("quantity") or "",
                item.get("measurement") or "",
                item.get("form"),
                item.get("food_id"),
                item.get("unit_id")
            ))

        group_id = None
        group_order = 0
        for position, item in enumerate(flat_instructions or []):
            if "group" in item:
                cursor = conn.execute(
                    "INSERT INTO instruction_groups (recipe_id, name, sort_order) VALUES (?, ?, ?)",
                    (recipe_id, item["group"], group_order)
                )
                group_id = cursor.lastrowid
                group_order += 1
                continue
            conn.execute(
                "INSERT INTO instructions (recipe_id, group_id, sort_order, step) VALUES (?, ?, ?, ?)",
                (recipe_id, group_id, position, item.get("step") or "")
            )

    @staticmethod
    def _rows_to_flat(rows, to_item) -> List[Dict[str, Any]]:
        flat = []
        current_group = None
        for row in rows:
            if row['group_order'] is not None and row['group_order'] != current_group:
                flat.append({"group": row['group_name']})
                current_group = row['group_order']
            flat.append(to_item(row))
        return flat

    @staticmethod
    def _recipe_values(fields: Dict[str, Any]) -> tuple:
        values = []
        for column in RECIPE_FIELDS:
            value = fields.get(column)
            if column == 'categories':
                value = json.dumps(value or [], ensure_ascii=False)
            elif column == 'description':
                value = value or ""
            values.append(value)
        return tuple(values)

    @staticmethod
    def _row_to_fields(row) -> Dict[str, Any]:
        fields = {column: row[column] for column in RECIPE_FIELDS}
        fields['categories'] = json.loads(row['categories'] or '[]')
        fields['id'] = row['id']
        return fields

    @staticmethod
    def _row_to_food(row) -> TaxonomyEntry:
        return TaxonomyEntry(
            id=row['id'],
            name=row['name'],
            kind=TaxonomyKind.FOOD,
            status=TaxonomyStatus(row['status']),
            created_by=row['created_by']
        )

    @staticmethod
    def _row_to_unit(row) -> TaxonomyEntry:
        return TaxonomyEntry(
            id=row['id'],
            name=row['name'],
            kind=TaxonomyKind.UNIT,
            plural=row['plural'],
            abbreviation=row['abbreviation']
        )


def get_database_service(db_path: str = "kokbok.db") -> DatabaseService:
    """Factory function to get a database service instance"""
    return DatabaseService(db_path)
