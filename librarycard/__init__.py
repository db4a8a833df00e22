"""LibraryCard: paylaşılan ev kütüphanesi yönetim API'si."""

__version__ = "1.0.0"
