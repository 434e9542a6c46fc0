from sqlalchemy import BigInteger, Column, Integer, MetaData, Table, Text

COLUMN_ID = "id"
COLUMN_PARENT_ID = "parent_id"
COLUMN_DATA = "data"
COLUMN_ROW_ID = "row_id"


def build_staging_table(
    metadata: MetaData,
    name: str,
    with_parent: bool = False,
    unique_ids: bool = True,
) -> Table:
    """
    Define one run-scoped staging table.

    Rows hold the numeric source id, an optional parent id and the record
    payload as encoded JSON. A NULL or empty payload is a "no data" row.

    Tables that may hold several rows per id (``unique_ids=False``) get a
    surrogate ``row_id`` key so insertion order is kept.
    """
    columns = []
    if unique_ids:
        columns.append(Column(COLUMN_ID, BigInteger, primary_key=True, autoincrement=False))
    else:
        columns.append(
            Column(
                COLUMN_ROW_ID,
                BigInteger().with_variant(Integer, "sqlite"),
                primary_key=True,
                autoincrement=True,
            )
        )
        columns.append(Column(COLUMN_ID, BigInteger, nullable=False, index=True))

    if with_parent:
        columns.append(Column(COLUMN_PARENT_ID, BigInteger, nullable=True, index=True))

    columns.append(Column(COLUMN_DATA, Text, nullable=True))

    return Table(name, metadata, *columns)


def has_parent_column(table: Table) -> bool:
    return COLUMN_PARENT_ID in table.c


def has_row_id_column(table: Table) -> bool:
    return COLUMN_ROW_ID in table.c
