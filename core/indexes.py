from motor.motor_asyncio import AsyncIOMotorDatabase


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    workers = db.get_collection("workers")
    sessions = db.get_collection("sessions")
    messages = db.get_collection("messages")
    ratings = db.get_collection("ratings")
    callbacks = db.get_collection("callbacks")

    await workers.create_index("username", unique=True)
    await workers.create_index([("status", 1), ("last_active", 1)])

    await sessions.create_index("room_id", unique=True)
    await sessions.create_index("worker_id")
    await sessions.create_index("status")

    # Message ids are only unique inside a room
    await messages.create_index([("room_id", 1), ("message_id", 1)], unique=True)
    await messages.create_index([("room_id", 1), ("timestamp", 1)])

    await ratings.create_index([("worker_id", 1), ("timestamp", -1)])
    await ratings.create_index([("rating", 1), ("timestamp", -1)])

    await callbacks.create_index([("status", 1), ("requested_at", -1)])
