"""
Storage collection keys and remote endpoint constants.

Centralizing these values makes it easy to rename a table or move the
REST prefix without touching provider code.
"""


class Collections:
    """Collection keys used by the entity store."""
    
    SECTORS = "sectors"
    ORCHARDS = "orchards"
    BLOCKS = "blocks"
    EVENTS = "events"
    AUDIT = "audit"
    
    ALL = (SECTORS, ORCHARDS, BLOCKS, EVENTS, AUDIT)
    
    # Collections that are only ever appended to
    APPEND_ONLY = (AUDIT,)


class RemoteTables:
    """Remote relational table names and REST endpoint paths."""
    
    REST_BASE = "/rest/v1"
    
    TABLES = {
        Collections.SECTORS: "sectors",
        Collections.ORCHARDS: "orchards",
        Collections.BLOCKS: "blocks",
        Collections.EVENTS: "tree_events",
        Collections.AUDIT: "audit_log",
    }
    
    @classmethod
    def table_for(cls, collection_key: str) -> str:
        """
        Map a collection key to its remote table name.
        
        Args:
            collection_key: One of the Collections keys
            
        Returns:
            Table name
            
        Raises:
            KeyError: If the collection key is unknown
        """
        return cls.TABLES[collection_key]
    
    @classmethod
    def endpoint_for(cls, collection_key: str) -> str:
        """
        Get the REST endpoint path for a collection.
        
        Args:
            collection_key: One of the Collections keys
            
        Returns:
            Endpoint path such as '/rest/v1/tree_events'
        """
        return f"{cls.REST_BASE}/{cls.table_for(collection_key)}"


class APIConstants:
    """General remote API constants."""
    
    # HTTP Headers
    CONTENT_TYPE_JSON = "application/json"
    PREFER_UPSERT = "resolution=merge-duplicates,return=minimal"
    PREFER_MINIMAL = "return=minimal"
    
    # Timeouts (in seconds)
    DEFAULT_TIMEOUT = 30.0
