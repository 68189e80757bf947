"""
This orm module layers convenience finders on top of SQLAlchemy mapped classes.
It contains the named store registry, attribute projections, the dynamic finder dispatcher,
the raw SQL executor, and the repository classes that expose them.
"""
