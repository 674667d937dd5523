from policy_guard.hook import main

if __name__ == "__main__":
    main()
