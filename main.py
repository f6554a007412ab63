import uvicorn


if __name__ == "__main__":
    uvicorn.run("exam_insight.main:app", reload=True)
