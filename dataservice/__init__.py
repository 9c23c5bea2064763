"""dataservice - generic CRUD, relation population and connection management for services"""

__version__ = "0.1.0"
