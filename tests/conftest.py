import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine


def _create_contact_schema(engine, *, unique_tel=False):
    metadata = MetaData()
    Table(
        "etats",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("titre", String(100)),
    )
    Table(
        "fiches",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("nom", String(100)),
        Column("prenom", String(100)),
        Column("tel", String(20), unique=unique_tel),
        Column("gsm1", String(20)),
        Column("gsm2", String(20)),
        Column("adresse", String(255)),
        Column("cp", String(5)),
        Column("ville", String(100)),
        Column("id_agent", Integer),
        Column("id_centre", Integer),
        Column("id_etat_final", Integer),
        Column("produit", Integer),
        Column("date_insert", Integer),
        Column("date_insert_time", String(19)),
        Column("date_modif_time", String(19)),
        Column("archive", Integer),
        Column("active", Integer),
        Column("ko", Integer),
        Column("hc", Integer),
        Column("valider", Integer),
        Column("hash", String(64)),
    )
    metadata.create_all(engine)
    return metadata


@pytest.fixture()
def create_contact_schema():
    """Create the contact and state tables on the given engine."""

    return _create_contact_schema


@pytest.fixture()
def sqlite_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'crm.db'}")
    yield engine
    engine.dispose()
