"""DownloadStat model with daily per-platform download counters."""

from sqlalchemy import Column, Integer, String

from database import Base


class DownloadStat(Base):
    """Daily apk/ipa download counts for one distribution."""

    __tablename__ = "distribution_download_stats"

    distribution_id = Column(String, primary_key=True)
    date = Column(String, primary_key=True)  # YYYY-MM-DD, UTC
    apk_downloads = Column(Integer, nullable=False, default=0, server_default="0")
    ipa_downloads = Column(Integer, nullable=False, default=0, server_default="0")
