"""BookSmart - Library Lending Core Package

This package contains the lending core of the library service:
- Domain records (book.py, reader.py, lib_card.py, reservation.py, rating.py)
- Stores backed by SQLite (catalog.py, card_registry.py, reader_registry.py,
  reservation_store.py, rating_ledger.py)
- Eligibility engine deciding reservation create/extend/close (services/)
- Facade wiring everything together (library.py)
"""
