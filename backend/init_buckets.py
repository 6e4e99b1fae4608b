import os

from dotenv import load_dotenv

from utils.gcs_utils import init_bucket

# Load environment variables from .env file
load_dotenv('.env')

CORS_CONFIGURATION = [
    {
        "origin": ["http://localhost:5173", "http://localhost:3000"],
        "method": ["GET", "PUT", "POST", "DELETE", "OPTIONS"],
        "responseHeader": ["Content-Type", "Content-Disposition"],
        "maxAgeSeconds": 3600,
    }
]


def init_buckets():
    bucket_name = os.getenv("GCS_BUCKET", "gif-studio")
    print(f"Initializing bucket: {bucket_name}")
    if init_bucket(bucket_name, cors=CORS_CONFIGURATION):
        print(f"✅ Bucket {bucket_name} ready with CORS config")
    else:
        print(f"❌ Error handling bucket {bucket_name}")


if __name__ == "__main__":
    init_buckets()
