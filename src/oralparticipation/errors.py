# src/oralparticipation/errors.py


class StoreError(Exception):
    """Basisklasse aller Fehler der lokalen Datenhaltung."""


class StoreUnavailable(StoreError):
    """Die Datenbank kann nicht angelegt oder geöffnet werden."""


class NotFound(StoreError):
    """Kein Datensatz mit der angefragten id."""

    def __init__(self, collection: str, key):
        super().__init__(f"{collection}: no record with key {key!r}")
        self.collection = collection
        self.key = key


class ConstraintViolation(StoreError):
    """Doppelter Primärschlüssel oder verletzter Unique-Index."""


class MalformedSnapshot(StoreError):
    """Ein gespeicherter Bewertungs-Snapshot lässt sich nicht lesen."""


class AccessModeError(StoreError):
    """Schreibzugriff über einen readonly geöffneten Collection-Zugriff."""
