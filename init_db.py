from config import GROUP_DB_URL, configure_logging
from db import engine, Base
from models import GroupMeta, GroupData

def main():
    configure_logging()
    print(f"Initializing group database at: {GROUP_DB_URL}")
    Base.metadata.create_all(engine)
    print("Group tables created: group_meta, group_data")

if __name__ == "__main__":
    main()
