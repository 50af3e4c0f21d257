"""deal_observer - Filecoin claim-event observer and payload CID resolver."""

__version__ = "0.1.0"
